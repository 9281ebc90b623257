"""Shared driver for per-document enrichment stages.

Extraction calls fan out across documents on a thread pool; results are
written back one document at a time on the calling thread, so an
interrupted run only ever leaves whole-document writes behind.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import structlog

from .errors import ExtractionError
from .logging_config import log_document_failure, log_stage_event
from .models import DocumentRef


@dataclass
class StageResult:
    """Counts for one stage run."""
    stage: str
    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_ms: float = 0.0
    errors: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "selected": self.selected,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


def fan_out(
    docs: List[DocumentRef],
    call: Callable[[DocumentRef], Any],
    max_workers: int = 4,
) -> Iterator[Tuple[DocumentRef, Any, Optional[ExtractionError]]]:
    """Run ``call`` for every document concurrently, yielding as each finishes."""
    if not docs:
        return
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(call, doc): doc for doc in docs}
        for future in as_completed(futures):
            doc = futures[future]
            try:
                yield doc, future.result(), None
            except ExtractionError as e:
                yield doc, None, e


def run_document_stage(
    stage: str,
    docs: List[DocumentRef],
    call: Callable[[DocumentRef], Any],
    apply: Callable[[DocumentRef, Any], bool],
    logger: structlog.BoundLogger,
    max_workers: int = 4,
    folder: Optional[str] = None,
    skipped: int = 0,
    label: Callable[[Any], str] = lambda doc: doc.filepath,
) -> StageResult:
    """
    Drive one enrichment stage over its selected documents.

    Args:
        stage: Stage name for logs and the report
        docs: Documents (or pages) selected by the stage predicate
        call: Extraction call; returns a payload or None when it produced nothing
        apply: Writes a payload to the store; False when the guard was already satisfied
        logger: Audit logger for the stage
        max_workers: Concurrent extraction calls
        folder: Folder filter, for logging
        skipped: Documents excluded before selection (e.g. above the page ceiling)
        label: Key for an item in the error report and failure logs

    Returns:
        StageResult with per-outcome counts
    """
    start_time = time.time()
    result = StageResult(stage=stage, selected=len(docs), skipped=skipped)

    for doc, payload, error in fan_out(docs, call, max_workers):
        if error is not None:
            result.failed += 1
            result.errors[label(doc)] = str(error)
            log_document_failure(logger, stage, label(doc), str(error))
            continue

        if payload is None:
            result.failed += 1
            result.errors[label(doc)] = "empty response"
            log_document_failure(logger, stage, label(doc), "empty response")
            continue

        if apply(doc, payload):
            result.succeeded += 1
        else:
            # Another run filled the field first
            result.skipped += 1

    result.elapsed_ms = (time.time() - start_time) * 1000
    log_stage_event(
        logger,
        stage=stage,
        selected=result.selected,
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
        execution_time_ms=result.elapsed_ms,
        folder=folder,
    )
    return result
