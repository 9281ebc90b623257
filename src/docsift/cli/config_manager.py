"""Persisted CLI settings layered over the environment configuration."""

import os
import json
from dataclasses import fields
from pathlib import Path
from typing import Dict, Any, Optional
import logging

import psycopg

from docsift.core.config import PipelineConfig, get_pipeline_config
from docsift.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTABLE_KEYS = {f.name: f.type for f in fields(PipelineConfig)}


def _coerce(key: str, value: Any) -> Any:
    if key not in SETTABLE_KEYS:
        raise ConfigurationError(f"Unknown configuration key: {key}")
    if SETTABLE_KEYS[key] in (int, "int"):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return str(value)


class DocsiftConfigManager:
    """
    Settings saved with ``docsift config set`` live in a JSON file and take
    precedence over environment variables; CLI options take precedence over both.
    """

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "docsift.json"
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load saved settings from file."""
        if not self.config_file.exists():
            logger.info("No config file found, using environment")
            return {}

        try:
            with open(self.config_file, 'r') as f:
                saved = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read {self.config_file}: {e}")

        logger.info("Configuration loaded from file")
        return {key: _coerce(key, value) for key, value in saved.items()}

    def _save_config(self):
        """Save settings to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2, sort_keys=True)
        logger.info("Configuration saved to file")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a saved setting."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True) -> Any:
        """Save a setting; returns the coerced value."""
        coerced = _coerce(key, value)
        self.config[key] = coerced
        if persist:
            self._save_config()
        logger.info(f"Set {key} = {coerced}")
        return coerced

    def reset(self, key: str, persist: bool = True) -> bool:
        """Drop a saved setting so the environment value applies again."""
        if key not in self.config:
            return False
        del self.config[key]
        if persist:
            self._save_config()
        logger.info(f"Reset {key} to environment default")
        return True

    def pipeline_config(self, overrides: Optional[Dict[str, Any]] = None) -> PipelineConfig:
        """Effective configuration: environment, then saved settings, then ``overrides``."""
        merged = dict(self.config)
        merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return get_pipeline_config(merged)

    def effective(self) -> Dict[str, Any]:
        """Every setting with its effective value and where it came from."""
        current = self.pipeline_config()
        return {
            key: {"value": value, "source": "file" if key in self.config else "env"}
            for key, value in current.as_dict().items()
        }

    def validate(self) -> Dict[str, Any]:
        """Validate the effective configuration without raising."""
        try:
            merged = get_pipeline_config()
        except ConfigurationError as e:
            return {"valid": False, "issues": [str(e)], "warnings": []}
        for key, value in self.config.items():
            setattr(merged, key, value)
        merged.parse_mode = merged.parse_mode.upper()
        return merged.validate()

    def check_database(self, db_url: str) -> Optional[str]:
        """None when the database answers, else the error message."""
        try:
            with psycopg.connect(db_url, connect_timeout=5) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        except psycopg.Error as e:
            return str(e)
        return None


def get_config_manager() -> DocsiftConfigManager:
    """Get the configuration manager for the current working directory."""
    config_dir = os.getenv("DOCSIFT_CONFIG_DIR", "./config")
    return DocsiftConfigManager(config_dir)
