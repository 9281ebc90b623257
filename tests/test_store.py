"""In-memory store contract and helpers shared with the PostgreSQL store."""

import pytest

from docsift.core.models import ParsedDocument, ParsedPage, Signature
from docsift.core.store import like_to_regex


@pytest.mark.parametrize("pattern,path,expected", [
    ("%", "anything/at/all.pdf", True),
    ("Clinical/%", "Clinical/A.pdf", True),
    ("Clinical/%", "Finance/A.pdf", False),
    ("%/A.pdf", "Clinical/A.pdf", True),
    ("_.pdf", "A.pdf", True),
    ("_.pdf", "AB.pdf", False),
    ("a+b.pdf", "a+b.pdf", True),
])
def test_like_to_regex(pattern, path, expected):
    assert bool(like_to_regex(pattern).match(path)) is expected


def test_insert_document_creates_contiguous_pages(store):
    parsed = ParsedDocument(
        page_count=3,
        pages=[ParsedPage(index=i, content=f"page {i}") for i in range(3)],
    )
    assert store.insert_document("Clinical/A.pdf", "A.pdf", parsed) == 3

    assert store.parsed_filepaths() == {"Clinical/A.pdf"}
    assert [p.page_index for p in store.pages()] == [0, 1, 2]
    assert all(p.page_count == 3 and p.parsed_at is not None for p in store.pages())


def test_documents_missing_page_bounds(store, add_document):
    add_document("small.pdf", ["p"] * 5)
    add_document("large.pdf", ["p"] * 130)

    assert [d.filepath for d in store.documents_missing("title", max_pages=125)] == ["small.pdf"]
    assert [d.filepath for d in store.documents_missing("title", min_pages=126)] == ["large.pdf"]


def test_documents_missing_rejects_unknown_field(store):
    with pytest.raises(ValueError):
        store.documents_missing("page_content")


def test_leading_pages_text_respects_limit(store, add_document):
    doc = add_document("A.pdf", ["a", "b", "c"])
    assert store.leading_pages_text(doc, 2) == "a\n\nb"


def test_write_is_guarded(store, add_document):
    doc = add_document("A.pdf", ["a"])

    assert store.write_document_fields(doc, {"title": "First"}, guard="title") is True
    assert store.write_document_fields(doc, {"title": "Second"}, guard="title") is False
    assert store.get_page("A.pdf", "A.pdf", 0).title == "First"


def test_status_reports_populated_and_missing(store, add_document):
    add_document("A.pdf", ["a"], title="T", summary="S")
    add_document("B.pdf", ["b"], signatures=[Signature(name="N", title="", date="2020")])

    statuses = {s.filepath: s for s in store.document_status()}

    assert statuses["A.pdf"].missing == ["print_date", "language"]
    assert statuses["A.pdf"].signatures is False
    assert statuses["B.pdf"].missing == ["title", "print_date", "language", "summary"]
    assert statuses["B.pdf"].signatures is True


def test_signature_rows(store, add_document):
    add_document("A.pdf", ["a", "b"], title="T", signatures=[
        Signature(name="Jane Doe", title="Director", date="2023-01-05"),
        Signature(name="John Roe", title="", date="2021-07-30"),
    ])
    add_document("B.pdf", ["b"])

    rows = store.signature_rows()

    assert [(r.filepath, r.signer_name, r.signature_raw) for r in rows] == [
        ("A.pdf", "Jane Doe", "Jane Doe | Director | 2023-01-05"),
        ("A.pdf", "John Roe", "John Roe |  | 2021-07-30"),
    ]
    assert rows[0].title == "T"


def test_stats(store, add_document, config):
    from docsift.core.chunking import regenerate_chunks

    add_document("A.pdf", ["a", "b"], title="T", signatures=[Signature(name="N", title="", date="2020")])
    regenerate_chunks(store, config)

    stats = store.stats()
    assert stats["total_documents"] == 1
    assert stats["total_pages"] == 2
    assert stats["with_signatures"] == 1
    assert stats["total_chunks"] == 2
    assert stats["chunks_with_signatures"] == 1
