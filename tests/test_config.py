"""Environment configuration, saved CLI settings and the CLI surface."""

import pytest
from typer.testing import CliRunner

from docsift.cli.config_manager import DocsiftConfigManager
from docsift.core.config import PipelineConfig, get_pipeline_config
from docsift.core.errors import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "DOCSIFT_STAGE_DIR", "DOCSIFT_FOLDER", "DOCSIFT_PARSE_MODE", "DOCSIFT_PAGE_CEILING",
        "DOCSIFT_CHUNK_SIZE", "DOCSIFT_CHUNK_OVERLAP", "DOCSIFT_MAX_WORKERS", "DOCSIFT_TARGET_LAG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = get_pipeline_config()
    assert config.page_ceiling == 125
    assert config.chunk_size == 2000
    assert config.chunk_overlap == 300
    assert config.folder_filter == "%"
    assert config.parse_mode == "OCR"


def test_environment_values(clean_env):
    clean_env.setenv("DOCSIFT_PAGE_CEILING", "50")
    clean_env.setenv("DOCSIFT_PARSE_MODE", "layout")
    clean_env.setenv("DOCSIFT_FOLDER", "Clinical/%")

    config = get_pipeline_config()

    assert config.page_ceiling == 50
    assert config.parse_mode == "LAYOUT"
    assert config.folder_filter == "Clinical/%"


def test_overrides_win_and_none_is_ignored(clean_env):
    clean_env.setenv("DOCSIFT_MAX_WORKERS", "8")
    config = get_pipeline_config({"max_workers": 2, "folder_filter": None})
    assert config.max_workers == 2
    assert config.folder_filter == "%"


@pytest.mark.parametrize("name,value", [
    ("DOCSIFT_CHUNK_SIZE", "big"),
    ("DOCSIFT_PARSE_MODE", "magic"),
    ("DOCSIFT_CHUNK_OVERLAP", "5000"),
    ("DOCSIFT_MAX_WORKERS", "0"),
])
def test_malformed_environment_is_fatal(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(ConfigurationError):
        get_pipeline_config()


def test_unknown_override_is_rejected(clean_env):
    with pytest.raises(ConfigurationError):
        get_pipeline_config({"no_such_key": 1})


def test_validate_warns_on_missing_stage_dir(tmp_path):
    validation = PipelineConfig(stage_dir=str(tmp_path / "missing")).validate()
    assert validation["valid"] is True
    assert any("Stage directory" in w for w in validation["warnings"])


# ─────────────────────────────────────────────────────────────────────────────
# Saved settings
# ─────────────────────────────────────────────────────────────────────────────

def test_saved_settings_round_trip(tmp_path, clean_env):
    manager = DocsiftConfigManager(str(tmp_path / "config"))
    assert manager.set("page_ceiling", "80") == 80

    reloaded = DocsiftConfigManager(str(tmp_path / "config"))
    assert reloaded.get("page_ceiling") == 80
    assert reloaded.pipeline_config().page_ceiling == 80
    assert reloaded.pipeline_config({"page_ceiling": 10}).page_ceiling == 10
    assert reloaded.effective()["page_ceiling"]["source"] == "file"

    assert reloaded.reset("page_ceiling") is True
    assert reloaded.reset("page_ceiling") is False
    assert reloaded.pipeline_config().page_ceiling == 125


def test_saved_settings_reject_bad_values(tmp_path):
    manager = DocsiftConfigManager(str(tmp_path / "config"))
    with pytest.raises(ConfigurationError):
        manager.set("page_ceiling", "many")
    with pytest.raises(ConfigurationError):
        manager.set("unknown", "1")


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def test_cli_config_set_and_show(tmp_path, clean_env):
    from docsift.cli.main import app

    clean_env.setenv("DOCSIFT_CONFIG_DIR", str(tmp_path / "config"))
    runner = CliRunner()

    result = runner.invoke(app, ["config", "set", "chunk_size", "1500"])
    assert result.exit_code == 0

    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    assert "chunk_size" in result.stdout
    assert "1500" in result.stdout


@pytest.mark.parametrize("args", [
    ["config", "reset", "chunk_size"],
    ["config", "set", "chunk_size", "1500"],
])
def test_cli_corrupt_config_file_exits_1(tmp_path, clean_env, args):
    from docsift.cli.main import app

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "docsift.json").write_text("{not json")
    clean_env.setenv("DOCSIFT_CONFIG_DIR", str(config_dir))

    result = CliRunner().invoke(app, args)

    assert result.exit_code == 1
    assert "Error" in result.stdout
    assert result.exception is None or isinstance(result.exception, SystemExit)


def test_cli_configuration_error_exits_1(clean_env):
    from docsift.cli.main import app

    clean_env.setenv("DOCSIFT_CHUNK_SIZE", "big")
    result = CliRunner().invoke(app, ["status"])
    assert result.exit_code == 1
    assert "Configuration error" in result.stdout


def test_build_filter():
    from docsift.cli.main import build_filter

    assert build_filter(None, None) is None
    assert build_filter(["language=English"], None) == {"@eq": {"language": "English"}}
    assert build_filter(["page_index=0"], ["filepath=Clinical"]) == {
        "@and": [{"@eq": {"page_index": 0}}, {"@contains": {"filepath": "Clinical"}}]
    }
