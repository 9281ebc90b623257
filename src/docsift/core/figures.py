"""Figure numbers, titles and image references for pages that embed images.

One row per page in ``page_figures``; a page that already has a row is never
extracted again, even when the model found no figure on it.
"""

from typing import Any, Dict, Optional
import logging

from .config import PipelineConfig
from .llm import ExtractionService
from .logging_config import get_audit_logger
from .models import NONE_SENTINEL, Figure, PageRecord
from .stage import StageResult, run_document_stage
from .store import DocumentStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("figures")

FIGURE_SCHEMA = {
    "figure_number": "The figure number (e.g. 14.2.1.1)",
    "figure_title": "The full title or description of the figure",
    "image_references": "List of image file references found (e.g. img-0.jpeg)",
}


def _field(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, list):
        value = ", ".join(str(item).strip() for item in value if item is not None)
    text = str(value).strip()
    if not text or text == NONE_SENTINEL:
        return None
    return text


def figure_from_payload(page: PageRecord, payload: Dict[str, Any]) -> Figure:
    """Figure row for ``page``; missing or "None" values are stored as null."""
    return Figure(
        filepath=page.filepath,
        filename=page.filename,
        page_index=page.page_index,
        figure_number=_field(payload, "figure_number"),
        figure_title=_field(payload, "figure_title"),
        image_references=_field(payload, "image_references"),
    )


def extract_figures(
    store: DocumentStore,
    service: ExtractionService,
    config: PipelineConfig,
) -> StageResult:
    """Extract figure details from the text of every image-bearing page without a figure row."""
    pages = store.pages_missing_figures(config.folder_filter)
    logger.info(f"Found {len(pages)} pages with images to check for figures")

    def call(page: PageRecord) -> Optional[Dict[str, Any]]:
        return service.extract(page.content, FIGURE_SCHEMA)

    def apply(page: PageRecord, payload: Dict[str, Any]) -> bool:
        return store.insert_figure(figure_from_payload(page, payload))

    return run_document_stage(
        "figures",
        pages,
        call,
        apply,
        audit_logger,
        max_workers=config.max_workers,
        folder=config.folder_filter,
        label=lambda page: f"{page.filepath}#{page.page_index}",
    )
