"""Handwritten signature extraction and validation.

Extraction is broad: the model returns "Name | Title | Date" strings and is
unreliable about emitting the literal "None" for unreadable fields instead of
leaving them out. Validation is narrow: a signature is kept only with a real
name and a real date. A document with nothing left stores null, never [].
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import logging

from .config import PipelineConfig
from .llm import ExtractionService
from .logging_config import get_audit_logger
from .models import DocumentRef, Signature
from .stage import StageResult, run_document_stage
from .store import DocumentStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("signatures")

SIGNATURE_BLOCK_HEADER = "--- Handwritten Signatures ---"

# Both must be null for a document to be extracted and written
SIGNATURE_GUARD = ("signatures_checked_at", "signatures")

SIGNATURE_SCHEMA = {
    "hand_signatures": {
        "type": "array",
        "description": (
            "List handwritten signatures on all pages except the dedicated Signatures Pages. "
            "For each, Return: [Name] | [Short Title] | [Date]."
        ),
        "items": {"type": "string"},
    }
}


def parse_signature(raw: str) -> Signature:
    """Split ``"Name | Title | Date"`` into its trimmed fields; missing fields are empty."""
    parts = [part.strip() for part in str(raw).split("|")]
    parts += [""] * (3 - len(parts))
    return Signature(name=parts[0], title=parts[1], date=parts[2])


def validate_signatures(raw_signatures: Iterable[Any]) -> Optional[List[Signature]]:
    """
    Keep candidates with a real name and a real date.

    Returns:
        The kept signatures in their original order, or None when none survive
    """
    kept = [
        sig for sig in (parse_signature(raw) for raw in raw_signatures if raw is not None)
        if sig.is_valid
    ]
    return kept or None


def signature_block(signatures: Optional[List[Signature]]) -> str:
    """Trailer appended to canonical-page chunks; empty when there are no signatures."""
    if not signatures:
        return ""
    lines = "\n".join(sig.as_line() for sig in signatures)
    return f"{SIGNATURE_BLOCK_HEADER}\n{lines}"


def raw_signature_list(payload: Dict[str, Any]) -> Optional[List[Any]]:
    """The hand_signatures array from an extraction payload, or None if absent or malformed."""
    value = payload.get("hand_signatures")
    if not isinstance(value, list):
        return None
    return value


def extract_signatures(
    store: DocumentStore,
    service: ExtractionService,
    config: PipelineConfig,
) -> StageResult:
    """
    Extract and validate signatures for documents not checked yet.

    Documents above the page ceiling are skipped: file extraction cannot take
    them and there is no text fallback for this stage. Signatures already on
    page 0 (loaded or corrected by hand) are never re-extracted or overwritten.
    """
    unchecked = store.documents_missing(SIGNATURE_GUARD, config.folder_filter)
    docs = [doc for doc in unchecked if doc.page_count <= config.page_ceiling]
    skipped = len(unchecked) - len(docs)
    if skipped:
        logger.info(f"Skipping {skipped} documents above the {config.page_ceiling}-page ceiling")
    logger.info(f"Found {len(docs)} documents to check for signatures")

    stage_dir = Path(config.stage_dir)

    def call(doc: DocumentRef) -> Optional[List[Any]]:
        payload = service.extract(stage_dir / doc.filepath, SIGNATURE_SCHEMA)
        if payload is None:
            return None
        return raw_signature_list(payload)

    def apply(doc: DocumentRef, raw: List[Any]) -> bool:
        valid = validate_signatures(raw)
        dropped = len(raw) - len(valid or [])
        if dropped:
            logger.debug(f"Dropped {dropped} incomplete signatures for {doc.filepath}")
        return store.write_document_fields(
            doc,
            {"signatures": valid, "signatures_checked_at": datetime.now(timezone.utc)},
            guard=SIGNATURE_GUARD,
        )

    return run_document_stage(
        "signatures",
        docs,
        call,
        apply,
        audit_logger,
        max_workers=config.max_workers,
        folder=config.folder_filter,
        skipped=skipped,
    )
