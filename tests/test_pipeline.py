"""
End-to-end pipeline over the in-memory store.

  • stage order and report
  • figures extracted once per image-bearing page
  • propagation invariant after a full run
  • second run issues no extraction calls and changes nothing
  • publish step through the FAISS publisher
"""

from docsift.core.faiss_index import FAISSConfig
from docsift.core.figures import FIGURE_SCHEMA
from docsift.core.models import DOCUMENT_FIELDS
from docsift.core.pipeline import EnrichmentPipeline
from docsift.core.publish import FaissIndexPublisher
from docsift.core.signatures import SIGNATURE_BLOCK_HEADER, SIGNATURE_SCHEMA


METADATA = {"title": "Stability Protocol", "print_date": "2022-03-14", "language": "English"}


def _answer(source, schema):
    if schema is SIGNATURE_SCHEMA:
        return {"hand_signatures": ["Jane Doe | Director | 2023-01-05", "None | None | None"]}
    if schema is FIGURE_SCHEMA:
        return {"figure_number": "14.2.1.1", "figure_title": "Assay results", "image_references": "img-0.jpeg"}
    return METADATA


def _seed(add_document):
    add_document("Clinical/A.pdf", ["# Cover\nProtocol text", "## Methods\nsteps", "appendix"], has_images=True)
    add_document("Finance/B.pdf", ["ledger"] * 200)


def test_full_run(store, service, config, add_document):
    _seed(add_document)
    service.extract.side_effect = _answer
    service.summarize.return_value = "Summary."

    report = EnrichmentPipeline(store, service, config).run()

    assert [r.stage for r in report.stages] == ["metadata", "summarize", "signatures", "figures", "propagate", "chunk"]
    assert report.stage("signatures").skipped == 1
    assert report.stage("figures").succeeded == 1
    assert report.failed == 0

    for filepath, filename in (("Clinical/A.pdf", "A.pdf"), ("Finance/B.pdf", "B.pdf")):
        page0 = store.get_page(filepath, filename, 0)
        assert page0.title == "Stability Protocol"
        for page in store.pages(filepath):
            for field in DOCUMENT_FIELDS:
                assert getattr(page, field) == getattr(page0, field)

    assert store.get_page("Finance/B.pdf", "B.pdf", 0).signatures is None
    assert [(f.filepath, f.page_index, f.figure_number) for f in store.figures()] == [("Clinical/A.pdf", 0, "14.2.1.1")]

    for chunk in store.chunks():
        has_block = SIGNATURE_BLOCK_HEADER in chunk.chunk
        assert has_block == (chunk.filepath == "Clinical/A.pdf" and chunk.page_index == 0)


def test_second_run_is_a_no_op(store, service, config, add_document):
    _seed(add_document)
    service.extract.side_effect = _answer
    service.summarize.return_value = "Summary."
    pipeline = EnrichmentPipeline(store, service, config)

    pipeline.run()
    pages, chunks = store.pages(), store.chunks()
    extract_calls, summarize_calls = service.extract.call_count, service.summarize.call_count

    report = pipeline.run()

    assert service.extract.call_count == extract_calls
    assert service.summarize.call_count == summarize_calls
    assert all(r.succeeded == 0 for r in report.stages if r.stage != "chunk")
    assert store.pages() == pages
    assert store.chunks() == chunks


def test_failed_document_recovers_on_next_run(store, service, config, add_document):
    add_document("A.pdf", ["cover", "body"])
    service.extract.return_value = None
    service.summarize.return_value = None
    pipeline = EnrichmentPipeline(store, service, config)

    first = pipeline.run()
    assert first.stage("metadata").failed == 1
    assert store.get_page("A.pdf", "A.pdf", 1).title is None

    service.extract.side_effect = _answer
    service.summarize.return_value = "Summary."
    pipeline.run()

    assert store.get_page("A.pdf", "A.pdf", 1).title == "Stability Protocol"
    assert store.get_page("A.pdf", "A.pdf", 1).summary == "Summary."


def test_run_publishes_chunks(store, service, config, add_document, fake_embedder, tmp_path):
    _seed(add_document)
    service.extract.side_effect = _answer
    service.summarize.return_value = "Summary."
    publisher = FaissIndexPublisher(str(tmp_path / "index"), fake_embedder, faiss_config=FAISSConfig("FLAT"))
    pipeline = EnrichmentPipeline(store, service, config)

    report = pipeline.run(publisher=publisher)
    assert report.publish.published is True
    assert report.publish.chunk_count == len(store.chunks())

    again = pipeline.run(publisher=publisher)
    assert again.publish.published is False
    assert report.as_dict()["publish"]["chunk_count"] == report.publish.chunk_count
