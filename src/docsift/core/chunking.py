"""Header-aware overlapping chunks with document context.

Each page is split at level-1 (#) and level-2 (##) markdown headers; each
header section is then cut into windows of at most ``chunk_size`` characters,
each window starting exactly ``overlap`` characters before the previous one
ended. Windows prefer to end on a paragraph, line or word boundary.

Chunk text is a pure function of the page row (and, on page 0, the
document's signatures), so regenerating twice yields identical output.
"""

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging

from .config import PipelineConfig
from .logging_config import get_audit_logger, log_stage_event
from .models import ChunkRecord, PageRecord
from .signatures import signature_block
from .stage import StageResult
from .store import DocumentStore

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("chunking")

CHUNK_SIZE = 2000
CHUNK_OVERLAP = 300

_HEADER_RE = re.compile(r"^(#{1,2})(?!#)\s+(.*?)\s*#*\s*$")

# Preferred window boundaries, strongest first
_BOUNDARIES = ("\n\n", "\n", " ")


@dataclass(frozen=True)
class Segment:
    """A piece of page text with the nearest preceding headers."""
    text: str
    header_1: Optional[str] = None
    header_2: Optional[str] = None


def _break_point(text: str, lo: int, hi: int) -> int:
    for boundary in _BOUNDARIES:
        idx = text.rfind(boundary, lo, hi)
        if idx != -1:
            return idx + len(boundary)
    return hi


def split_window(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Cut ``text`` into overlapping windows of at most ``chunk_size`` characters."""
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    if len(text) <= chunk_size:
        return [text]

    windows = []
    start = 0
    while True:
        end = min(start + chunk_size, len(text))
        if end < len(text):
            # Never end inside the overlap, so every window advances
            lo = max(start + overlap + 1, start + chunk_size // 2)
            end = _break_point(text, lo, end)
        windows.append(text[start:end])
        if end >= len(text):
            break
        start = end - overlap
    return windows


def split_sections(text: str) -> List[Segment]:
    """
    Group page lines under their nearest # and ## headers; header lines become metadata.

    A page made only of header lines (a cover or title page) yields one empty
    segment carrying the last headers, so the page still produces a chunk.
    """
    sections: List[Segment] = []
    header_1: Optional[str] = None
    header_2: Optional[str] = None
    lines: List[str] = []

    def flush() -> None:
        body = "\n".join(lines).strip()
        if body:
            sections.append(Segment(body, header_1, header_2))
        lines.clear()

    for line in text.splitlines():
        match = _HEADER_RE.match(line)
        if match is None:
            lines.append(line)
            continue
        flush()
        if len(match.group(1)) == 1:
            header_1 = match.group(2) or None
            header_2 = None
        else:
            header_2 = match.group(2) or None

    flush()
    if not sections and (header_1 or header_2):
        sections.append(Segment("", header_1, header_2))
    return sections


def split_markdown(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[Segment]:
    """Ordered segments of ``text`` with their header_1 / header_2 context."""
    return [
        Segment(window, section.header_1, section.header_2)
        for section in split_sections(text)
        for window in split_window(section.text, chunk_size, overlap)
    ]


def compose_chunk_text(page: PageRecord, segment: Segment) -> str:
    """Location line, title, headers, segment text, and the signature block on page 0."""
    lines = [f"{page.filepath} - Page {page.page_index}:"]
    if page.title:
        lines.append(f"Title: {page.title}")
    if segment.header_1:
        lines.append(f"Header 1: {segment.header_1}")
    if segment.header_2:
        lines.append(f"Header 2: {segment.header_2}")
    if segment.text:
        lines.append(segment.text)
    text = "\n".join(lines)

    if page.is_canonical:
        block = signature_block(page.signatures)
        if block:
            text += "\n\n" + block
    return text


def source_url(stage_dir: Optional[str], filepath: str) -> Optional[str]:
    """file:// link to the staged source file, or None without a stage directory."""
    if not stage_dir:
        return None
    return (Path(stage_dir).resolve() / filepath).as_uri()


def build_page_chunks(
    page: PageRecord,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    stage_dir: Optional[str] = None,
) -> List[ChunkRecord]:
    """
    Chunks for one page, chunk_index 0..k-1 in segment order.

    A canonical page with signatures but no text still gets one chunk, so the
    signature block always reaches the index.
    """
    segments = split_markdown(page.content or "", chunk_size, overlap)
    if not segments and page.is_canonical and page.signatures:
        segments = [Segment("")]

    file_url = source_url(stage_dir, page.filepath)
    return [
        ChunkRecord(
            filepath=page.filepath,
            filename=page.filename,
            page_index=page.page_index,
            page_count=page.page_count,
            chunk_index=chunk_index,
            chunk=compose_chunk_text(page, segment),
            header_1=segment.header_1,
            header_2=segment.header_2,
            title=page.title,
            print_date=page.print_date,
            language=page.language,
            summary=page.summary,
            signatures=page.signatures,
            file_url=file_url,
        )
        for chunk_index, segment in enumerate(segments)
    ]


def build_chunks(
    pages: List[PageRecord],
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
    stage_dir: Optional[str] = None,
) -> List[ChunkRecord]:
    """Chunks for every page, in document and page order."""
    ordered = sorted(pages, key=lambda p: (p.filepath, p.filename, p.page_index))
    chunks: List[ChunkRecord] = []
    for page in ordered:
        chunks.extend(build_page_chunks(page, chunk_size, overlap, stage_dir))
    return chunks


def regenerate_chunks(store: DocumentStore, config: PipelineConfig) -> StageResult:
    """
    Rebuild the whole chunk set from the current pages and swap it in.

    Not incremental: the previous set is replaced in one step, never merged.
    """
    start_time = time.time()
    pages = store.pages()
    chunks = build_chunks(pages, config.chunk_size, config.chunk_overlap, config.stage_dir)
    written = store.replace_chunks(chunks)

    result = StageResult(
        stage="chunk",
        selected=len(pages),
        succeeded=written,
        elapsed_ms=(time.time() - start_time) * 1000,
    )
    logger.info(f"Generated {written} chunks from {len(pages)} pages")
    log_stage_event(
        audit_logger,
        stage=result.stage,
        selected=result.selected,
        succeeded=result.succeeded,
        failed=0,
        skipped=0,
        execution_time_ms=result.elapsed_ms,
    )
    return result
