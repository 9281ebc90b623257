"""Copy document-level fields from the canonical page to the rest of the document."""

import time

from .logging_config import get_audit_logger, log_stage_event
from .stage import StageResult
from .store import DocumentStore

audit_logger = get_audit_logger("propagate")


def propagate_metadata(store: DocumentStore, folder: str = "%") -> StageResult:
    """
    Fill title, print_date, language, summary and signatures on every page
    where they are null, from page 0 of documents that have a title.

    Values already present on a page are never overwritten.
    """
    start_time = time.time()
    touched = store.propagate(folder)
    result = StageResult(
        stage="propagate",
        selected=touched,
        succeeded=touched,
        elapsed_ms=(time.time() - start_time) * 1000,
    )
    log_stage_event(
        audit_logger,
        stage=result.stage,
        selected=result.selected,
        succeeded=result.succeeded,
        failed=0,
        skipped=0,
        execution_time_ms=result.elapsed_ms,
        folder=folder,
    )
    return result
