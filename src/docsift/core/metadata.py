"""Title, print date and language per document, with a size-dependent extraction strategy."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .config import PipelineConfig
from .llm import ExtractionService
from .logging_config import get_audit_logger
from .models import NONE_SENTINEL, DocumentRef
from .stage import StageResult, run_document_stage
from .store import DocumentStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("metadata")

METADATA_SCHEMA = {
    "title": (
        "The main title or subject of this document, not the company name. Look for text after "
        "headers like Update, Report, Protocol, or similar descriptive titles."
    ),
    "print_date": (
        "Any date found in the document: print date, effective date, revision date, approval date, "
        "document date, or date in header/footer"
    ),
    "language": "The primary language the document content is written in",
}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text in ("", NONE_SENTINEL):
        return None
    return text


def metadata_values(payload: Dict[str, Any]) -> Optional[Dict[str, Optional[str]]]:
    """Map an extraction payload to page columns; None when there is no usable title."""
    title = _clean(payload.get("title"))
    if title is None:
        return None
    return {
        "title": title,
        "print_date": _clean(payload.get("print_date")),
        "language": _clean(payload.get("language")),
    }


class MetadataStrategy(ABC):
    """One way of calling Extract for a document's metadata."""

    name = "base"

    @abstractmethod
    def selects(self, doc: DocumentRef) -> bool:
        """Whether this strategy handles the document."""

    @abstractmethod
    def extract(self, doc: DocumentRef, service: ExtractionService) -> Optional[Dict[str, Any]]:
        """Run the extraction call; None when it produced no payload."""


class FileMetadataStrategy(MetadataStrategy):
    """Extract against the staged file itself; sees headers, footers and file metadata."""

    name = "file"

    def __init__(self, stage_dir: Path, page_ceiling: int = 125):
        self.stage_dir = Path(stage_dir)
        self.page_ceiling = page_ceiling

    def selects(self, doc: DocumentRef) -> bool:
        return doc.page_count <= self.page_ceiling

    def extract(self, doc, service):
        return service.extract(self.stage_dir / doc.filepath, METADATA_SCHEMA)


class LeadingPagesMetadataStrategy(MetadataStrategy):
    """Extract against the text of the first pages, for documents too large for file input."""

    name = "leading_pages"

    def __init__(self, store: DocumentStore, page_ceiling: int = 125, lookback_pages: int = 10):
        self.store = store
        self.page_ceiling = page_ceiling
        self.lookback_pages = lookback_pages

    def selects(self, doc: DocumentRef) -> bool:
        return doc.page_count > self.page_ceiling

    def extract(self, doc, service):
        text = self.store.leading_pages_text(doc, self.lookback_pages)
        if not text.strip():
            return None
        return service.extract(text, METADATA_SCHEMA)


def default_strategies(store: DocumentStore, config: PipelineConfig) -> List[MetadataStrategy]:
    return [
        FileMetadataStrategy(Path(config.stage_dir), config.page_ceiling),
        LeadingPagesMetadataStrategy(store, config.page_ceiling, config.lookback_pages),
    ]


def select_strategy(doc: DocumentRef, strategies: List[MetadataStrategy]) -> MetadataStrategy:
    """The first strategy that handles the document; each document gets exactly one."""
    for strategy in strategies:
        if strategy.selects(doc):
            return strategy
    raise ValueError(f"No metadata strategy handles {doc.filepath} ({doc.page_count} pages)")


def extract_metadata(
    store: DocumentStore,
    service: ExtractionService,
    config: PipelineConfig,
    strategies: Optional[List[MetadataStrategy]] = None,
) -> StageResult:
    """
    Fill title, print_date and language on page 0 of every document without a title.

    Args:
        store: Document store
        service: Extraction service
        config: Pipeline configuration (folder filter, page ceiling, lookback)
        strategies: Strategy list; defaults to file extraction up to the ceiling
            and leading-pages text above it

    Returns:
        StageResult for the metadata stage
    """
    strategies = strategies or default_strategies(store, config)
    docs = store.documents_missing("title", config.folder_filter)
    logger.info(f"Found {len(docs)} documents without metadata")

    def call(doc: DocumentRef) -> Optional[Dict[str, Optional[str]]]:
        strategy = select_strategy(doc, strategies)
        logger.debug(f"Extracting metadata for {doc.filepath} with {strategy.name} strategy")
        payload = strategy.extract(doc, service)
        if payload is None:
            return None
        return metadata_values(payload)

    def apply(doc: DocumentRef, values: Dict[str, Optional[str]]) -> bool:
        return store.write_document_fields(doc, values, guard="title")

    return run_document_stage(
        "metadata",
        docs,
        call,
        apply,
        audit_logger,
        max_workers=config.max_workers,
        folder=config.folder_filter,
    )
