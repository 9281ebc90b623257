"""Structured logging configuration for docsift."""

from typing import Dict, Any, Optional
import structlog
from structlog.stdlib import LoggerFactory
import logging


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging for pipeline runs."""

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        # JSON output for scheduled runs
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Human-readable for development
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger bound to a pipeline component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_stage_event(
    logger: structlog.BoundLogger,
    stage: str,
    selected: int,
    succeeded: int,
    failed: int,
    skipped: int,
    execution_time_ms: float,
    folder: Optional[str] = None
) -> None:
    """Log the outcome of one pipeline stage."""
    logger.info(
        "stage_completed",
        stage=stage,
        selected=selected,
        succeeded=succeeded,
        failed=failed,
        skipped=skipped,
        execution_time_ms=execution_time_ms,
        folder=folder,
        event_type="pipeline_stage"
    )


def log_document_failure(
    logger: structlog.BoundLogger,
    stage: str,
    filepath: str,
    error: str
) -> None:
    """Log a per-document failure; the document stays eligible for the next run."""
    logger.warning(
        "document_failed",
        stage=stage,
        filepath=filepath,
        error=error,
        retryable=True,
        event_type="pipeline_stage"
    )


def log_ingestion_event(
    logger: structlog.BoundLogger,
    filepath: str,
    pages: int,
    mode: str,
    ocr_pages: int,
    processing_time_ms: float
) -> None:
    """Log document parsing for audit trail."""
    logger.info(
        "document_parsed",
        filepath=filepath,
        pages=pages,
        mode=mode,
        ocr_pages=ocr_pages,
        processing_time_ms=processing_time_ms,
        event_type="document_ingestion"
    )


def log_index_publish(
    logger: structlog.BoundLogger,
    index_path: str,
    chunk_count: int,
    fingerprint: str,
    generation: str,
    publish_time_ms: float,
    extra: Optional[Dict[str, Any]] = None
) -> None:
    """Log a search index publish."""
    logger.info(
        "index_published",
        index_path=index_path,
        chunk_count=chunk_count,
        fingerprint=fingerprint,
        generation=generation,
        publish_time_ms=publish_time_ms,
        **(extra or {}),
        event_type="index_publish"
    )
