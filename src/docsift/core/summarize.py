"""Short free-text summary per document, from its leading pages."""

import logging
from typing import Optional

from .config import PipelineConfig
from .llm import ExtractionService
from .logging_config import get_audit_logger
from .models import DocumentRef
from .stage import StageResult, run_document_stage
from .store import DocumentStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("summarize")

SUMMARY_PROMPT = (
    "Provide a brief 2-3 sentence summary of the following document. "
    "Be concise and focus on the main topic:\n\n"
)


def build_summary_prompt(text: str, char_budget: int = 8000) -> str:
    """Summary instruction followed by the first ``char_budget`` characters of ``text``."""
    return SUMMARY_PROMPT + text[:char_budget]


def summarize_documents(
    store: DocumentStore,
    service: ExtractionService,
    config: PipelineConfig,
) -> StageResult:
    """
    Write a summary to page 0 of every document that has none.

    Independent of the metadata stage; the write is skipped when another run
    stored a summary in the meantime.
    """
    docs = store.documents_missing("summary", config.folder_filter)
    logger.info(f"Found {len(docs)} documents without summary")

    def call(doc: DocumentRef) -> Optional[str]:
        text = store.leading_pages_text(doc, config.lookback_pages)
        if not text.strip():
            return None
        return service.summarize(build_summary_prompt(text, config.summary_char_budget))

    def apply(doc: DocumentRef, summary: str) -> bool:
        return store.write_document_fields(doc, {"summary": summary}, guard="summary")

    return run_document_stage(
        "summarize",
        docs,
        call,
        apply,
        audit_logger,
        max_workers=config.max_workers,
        folder=config.folder_filter,
    )
