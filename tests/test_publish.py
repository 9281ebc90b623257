"""
FAISS index publishing.

  • generations and the CURRENT pointer
  • unchanged chunk sets are not republished
  • freshness against the target lag
  • search with @eq / @contains / @and filters
"""

from datetime import datetime, timedelta, timezone

import pytest

from docsift.core.faiss_index import FAISSConfig, matches_filter
from docsift.core.models import ChunkRecord
from docsift.core.publish import (
    FRESH,
    OVERDUE,
    PENDING,
    UNPUBLISHED,
    FaissIndexPublisher,
    chunk_fingerprint,
)


def _chunk(filepath, page_index, text, **attrs):
    return ChunkRecord(
        filepath=filepath,
        filename=filepath.rsplit("/", 1)[-1],
        page_index=page_index,
        page_count=3,
        chunk_index=0,
        chunk=text,
        **attrs,
    )


@pytest.fixture
def chunks():
    return [
        _chunk("Clinical/A.pdf", 0, "stability protocol cover", title="Protocol", language="English"),
        _chunk("Clinical/A.pdf", 1, "stability results table", title="Protocol", language="English"),
        _chunk("Finance/B.pdf", 0, "quarterly ledger", title="Ledger", language="German"),
    ]


@pytest.fixture
def publisher(tmp_path, fake_embedder):
    return FaissIndexPublisher(
        str(tmp_path / "index"),
        fake_embedder,
        target_lag_seconds=3600,
        faiss_config=FAISSConfig("FLAT"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Filters
# ─────────────────────────────────────────────────────────────────────────────

ATTRS = {"title": "Protocol", "filepath": "Clinical/A.pdf", "language": "English", "page_index": 0}


@pytest.mark.parametrize("filter_spec,expected", [
    (None, True),
    ({"@eq": {"language": "English"}}, True),
    ({"@eq": {"language": "German"}}, False),
    ({"@contains": {"filepath": "Clinical"}}, True),
    ({"@contains": {"filepath": "Finance"}}, False),
    ({"@contains": {"summary": "x"}}, False),
    ({"@and": [{"@eq": {"page_index": 0}}, {"@contains": {"title": "Proto"}}]}, True),
    ({"@and": [{"@eq": {"page_index": 1}}, {"@contains": {"title": "Proto"}}]}, False),
    ({"@or": [{"@eq": {"page_index": 1}}, {"@eq": {"language": "English"}}]}, True),
    ({"@not": {"@eq": {"language": "English"}}}, False),
])
def test_matches_filter(filter_spec, expected):
    assert matches_filter(ATTRS, filter_spec) is expected


def test_unknown_filter_operator():
    with pytest.raises(ValueError):
        matches_filter(ATTRS, {"@like": {"title": "P%"}})


# ─────────────────────────────────────────────────────────────────────────────
# Publishing
# ─────────────────────────────────────────────────────────────────────────────

def test_fingerprint_ignores_order(chunks):
    assert chunk_fingerprint(chunks) == chunk_fingerprint(list(reversed(chunks)))
    changed = [chunks[0].model_copy(update={"chunk": "edited"})] + chunks[1:]
    assert chunk_fingerprint(changed) != chunk_fingerprint(chunks)


def test_publish_writes_generation_and_pointer(publisher, chunks):
    assert publisher.freshness(chunks) == UNPUBLISHED

    result = publisher.publish(chunks)

    assert result.published is True
    assert publisher.current_generation() == result.generation
    manifest = publisher.manifest()
    assert manifest["chunk_count"] == 3
    assert manifest["fingerprint"] == chunk_fingerprint(chunks)
    assert manifest["target_lag_seconds"] == 3600
    assert publisher.freshness(chunks) == FRESH


def test_unchanged_set_is_not_republished(publisher, chunks, fake_embedder):
    first = publisher.publish(chunks)
    second = publisher.publish(chunks)

    assert second.published is False
    assert second.generation == first.generation
    assert len(fake_embedder.calls) == 1

    forced = publisher.publish(chunks, force=True)
    assert forced.published is True
    assert forced.generation != first.generation


def test_old_generations_are_pruned(publisher, chunks, tmp_path):
    publisher.publish(chunks)
    publisher.publish(chunks[:2])
    publisher.publish(chunks[:1])

    generations = sorted(p.name for p in (tmp_path / "index" / "generations").iterdir())
    assert len(generations) == 2
    assert publisher.current_generation() in generations


def test_freshness_against_target_lag(publisher, chunks):
    publisher.publish(chunks)
    changed = chunks[:2]
    published_at = datetime.fromisoformat(publisher.manifest()["published_at"])

    assert publisher.freshness(changed, now=published_at + timedelta(minutes=10)) == PENDING
    assert publisher.freshness(changed, now=published_at + timedelta(hours=2)) == OVERDUE

    assert publisher.publish_if_due(changed, now=published_at + timedelta(minutes=10)) is None
    result = publisher.publish_if_due(changed, now=published_at + timedelta(hours=2))
    assert result.published is True
    assert publisher.freshness(changed) == FRESH


def test_empty_chunk_set_publishes_empty_index(publisher):
    result = publisher.publish([])
    assert result.published is True
    assert publisher.search("anything") == []


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

def test_search_returns_exact_text_first(publisher, chunks):
    publisher.publish(chunks)

    hits = publisher.search("quarterly ledger", k=3)

    assert hits[0]["chunk_id"] == "Finance/B.pdf#0:0"
    assert hits[0]["score"] == pytest.approx(1.0, abs=1e-5)
    assert hits[0]["title"] == "Ledger"


def test_search_with_filters(publisher, chunks):
    publisher.publish(chunks)

    hits = publisher.search("quarterly ledger", k=5, filter_spec={"@contains": {"filepath": "Clinical/"}})
    assert {h["filepath"] for h in hits} == {"Clinical/A.pdf"}

    hits = publisher.search(
        "anything",
        k=5,
        filter_spec={"@and": [{"@eq": {"language": "English"}}, {"@eq": {"page_index": 1}}]},
    )
    assert [h["chunk_id"] for h in hits] == ["Clinical/A.pdf#1:0"]


def test_search_before_publish_is_empty(publisher):
    assert publisher.search("anything") == []


def test_search_returns_source_file_link(publisher, chunks):
    linked = [c.model_copy(update={"file_url": f"file:///stage/{c.filepath}"}) for c in chunks]
    publisher.publish(linked)

    hit = publisher.search("quarterly ledger", k=1)[0]

    assert hit["file_url"] == "file:///stage/Finance/B.pdf"


def test_moved_source_files_change_fingerprint(chunks):
    moved = [c.model_copy(update={"file_url": f"file:///new/{c.filepath}"}) for c in chunks]
    assert chunk_fingerprint(moved) != chunk_fingerprint(chunks)
