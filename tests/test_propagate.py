"""Propagation of page-0 fields onto the rest of each document."""

from docsift.core.models import DOCUMENT_FIELDS, Signature
from docsift.core.propagate import propagate_metadata


SIGS = [Signature(name="Jane Doe", title="Director", date="2023-01-05")]


def test_all_pages_match_page0(store, add_document):
    add_document(
        "A.pdf", ["p0", "p1", "p2"],
        title="Report", summary="S", signatures=SIGS, print_date="2023", language="English",
    )

    result = propagate_metadata(store)

    assert result.succeeded == 2
    page0 = store.get_page("A.pdf", "A.pdf", 0)
    for index in range(3):
        page = store.get_page("A.pdf", "A.pdf", index)
        for field in DOCUMENT_FIELDS:
            assert getattr(page, field) == getattr(page0, field)


def test_documents_without_title_are_left_alone(store, add_document):
    add_document("A.pdf", ["p0", "p1"], summary="Has a summary but no title")

    assert propagate_metadata(store).succeeded == 0
    assert store.get_page("A.pdf", "A.pdf", 1).summary is None


def test_existing_values_are_not_overwritten(store, add_document):
    add_document("A.pdf", ["p0", "p1"], title="Report", language="English")
    page1 = store.get_page("A.pdf", "A.pdf", 1)
    store.add_page(page1.model_copy(update={"language": "German"}))

    propagate_metadata(store)

    page1 = store.get_page("A.pdf", "A.pdf", 1)
    assert page1.title == "Report"
    assert page1.language == "German"


def test_second_run_touches_nothing(store, add_document):
    add_document("A.pdf", ["p0", "p1"], title="Report")

    propagate_metadata(store)
    snapshot = store.pages()
    result = propagate_metadata(store)

    assert result.succeeded == 0
    assert store.pages() == snapshot


def test_late_summary_reaches_propagated_pages(store, add_document):
    doc = add_document("A.pdf", ["p0", "p1"], title="Report")
    propagate_metadata(store)
    store.write_document_fields(doc, {"summary": "Later"}, guard="summary")

    propagate_metadata(store)

    assert store.get_page("A.pdf", "A.pdf", 1).summary == "Later"


def test_folder_filter(store, add_document):
    add_document("Clinical/A.pdf", ["p0", "p1"], title="A")
    add_document("Finance/B.pdf", ["p0", "p1"], title="B")

    propagate_metadata(store, "Clinical/%")

    assert store.get_page("Clinical/A.pdf", "A.pdf", 1).title == "A"
    assert store.get_page("Finance/B.pdf", "B.pdf", 1).title is None
