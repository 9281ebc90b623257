"""Summarizer stage: prompt construction, guard and idempotence."""

from docsift.core.errors import ExtractionError
from docsift.core.summarize import SUMMARY_PROMPT, build_summary_prompt, summarize_documents


def test_prompt_truncates_to_budget():
    prompt = build_summary_prompt("x" * 10000, 8000)
    assert prompt.startswith(SUMMARY_PROMPT)
    assert len(prompt) == len(SUMMARY_PROMPT) + 8000


def test_summary_written_to_page0(store, service, config, add_document):
    add_document("A.pdf", ["intro text", "details"])
    service.summarize.return_value = "A short summary."

    result = summarize_documents(store, service, config)

    assert result.succeeded == 1
    prompt = service.summarize.call_args.args[0]
    assert prompt == SUMMARY_PROMPT + "intro text\n\ndetails"
    assert store.get_page("A.pdf", "A.pdf", 0).summary == "A short summary."
    assert store.get_page("A.pdf", "A.pdf", 1).summary is None


def test_existing_summary_issues_no_call(store, service, config, add_document):
    add_document("A.pdf", ["intro"], summary="Already there.")

    result = summarize_documents(store, service, config)

    service.summarize.assert_not_called()
    assert result.selected == 0
    assert store.get_page("A.pdf", "A.pdf", 0).summary == "Already there."


def test_independent_of_metadata(store, service, config, add_document):
    add_document("A.pdf", ["intro"])
    service.summarize.return_value = "Summary without a title."

    summarize_documents(store, service, config)

    page0 = store.get_page("A.pdf", "A.pdf", 0)
    assert page0.title is None
    assert page0.summary == "Summary without a title."


def test_empty_response_retried_next_run(store, service, config, add_document):
    add_document("A.pdf", ["intro"])
    service.summarize.return_value = None
    assert summarize_documents(store, service, config).failed == 1

    service.summarize.return_value = "Now it works."
    assert summarize_documents(store, service, config).succeeded == 1
    assert store.get_page("A.pdf", "A.pdf", 0).summary == "Now it works."


def test_blank_document_is_not_sent(store, service, config, add_document):
    add_document("A.pdf", ["   ", ""])

    result = summarize_documents(store, service, config)

    service.summarize.assert_not_called()
    assert result.failed == 1


def test_call_error_is_counted(store, service, config, add_document):
    add_document("A.pdf", ["intro"])
    service.summarize.side_effect = ExtractionError("boom")

    result = summarize_documents(store, service, config)

    assert result.failed == 1
    assert "A.pdf" in result.errors
