"""Parse staged PDFs into page rows: PyMuPDF text layer -> OCR (fallback) or layout markdown."""

import io
import time
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import List, Tuple
import logging

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from .errors import ParseError
from .logging_config import get_audit_logger, log_ingestion_event, log_stage_event
from .models import ParsedDocument, ParsedPage
from .stage import StageResult
from .store import DocumentStore, like_to_regex

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("parse")

# Pages with less text than this in their text layer go through OCR
MIN_TEXT_LAYER_CHARS = 50

# Font size ratios (span size / body size) that mark a header
H1_RATIO = 1.5
H2_RATIO = 1.2


class ParseMode(str, Enum):
    """OCR: fast text extraction. LAYOUT: table and structure aware."""
    OCR = "OCR"
    LAYOUT = "LAYOUT"


def extract_text_with_ocr(page: fitz.Page) -> str:
    """Extract text from a rendered page image."""
    try:
        # Increase resolution for better OCR
        mat = fitz.Matrix(2.0, 2.0)
        pix = page.get_pixmap(matrix=mat)
        image = Image.open(io.BytesIO(pix.tobytes("png")))
        return pytesseract.image_to_string(image)
    except (RuntimeError, pytesseract.TesseractError, OSError) as e:
        logger.error(f"OCR extraction failed on page {page.number}: {e}")
        return ""


def _body_font_size(page: fitz.Page) -> float:
    """Most common span size on the page, weighted by character count."""
    sizes: Counter = Counter()
    for block in page.get_text("dict")["blocks"]:
        for line in block.get("lines", []):
            for span in line["spans"]:
                text = span["text"].strip()
                if text:
                    sizes[round(span["size"], 1)] += len(text)
    if not sizes:
        return 0.0
    return sizes.most_common(1)[0][0]


def _inside(bbox: Tuple[float, float, float, float], rects: List[fitz.Rect]) -> bool:
    block_rect = fitz.Rect(bbox)
    return any(rect.contains(block_rect) or rect.intersects(block_rect) for rect in rects)


def extract_layout_markdown(page: fitz.Page) -> str:
    """
    Render a page as markdown: large spans become headers, tables become
    markdown tables, everything else is emitted block by block in reading order.
    """
    body_size = _body_font_size(page)

    items: List[Tuple[float, float, str]] = []
    table_rects: List[fitz.Rect] = []

    for table in page.find_tables().tables:
        table_rects.append(fitz.Rect(table.bbox))
        items.append((table.bbox[1], table.bbox[0], table.to_markdown().strip()))

    for block in page.get_text("dict")["blocks"]:
        if "lines" not in block or _inside(block["bbox"], table_rects):
            continue

        lines = []
        max_size = 0.0
        for line in block["lines"]:
            line_text = "".join(span["text"] for span in line["spans"]).strip()
            if line_text:
                lines.append(line_text)
                max_size = max([max_size] + [s["size"] for s in line["spans"] if s["text"].strip()])
        if not lines:
            continue

        text = "\n".join(lines)
        if body_size and max_size >= body_size * H1_RATIO:
            text = "# " + " ".join(lines)
        elif body_size and max_size >= body_size * H2_RATIO:
            text = "## " + " ".join(lines)

        items.append((block["bbox"][1], block["bbox"][0], text))

    items.sort(key=lambda item: (item[0], item[1]))
    return "\n\n".join(text for _, _, text in items if text)


def parse_document(pdf_path: Path, mode: ParseMode = ParseMode.OCR, ocr_fallback: bool = True) -> ParsedDocument:
    """
    Parse a PDF into ordered pages.

    Args:
        pdf_path: Path to the staged PDF
        mode: OCR (text layer, OCR for empty pages) or LAYOUT (markdown with headers and tables)
        ocr_fallback: Whether to OCR pages with little or no text layer

    Returns:
        ParsedDocument with page_count and one ParsedPage per page
    """
    try:
        doc = fitz.open(pdf_path)
    except (fitz.FileDataError, FileNotFoundError, RuntimeError) as e:
        raise ParseError(f"Cannot open {pdf_path}: {e}") from e

    try:
        pages = []
        ocr_pages = 0
        for page in doc:
            if mode == ParseMode.LAYOUT:
                text = extract_layout_markdown(page)
            else:
                text = page.get_text()

            if len(text.strip()) < MIN_TEXT_LAYER_CHARS and ocr_fallback:
                logger.info(f"Page {page.number}: Low text content, trying OCR")
                ocr_text = extract_text_with_ocr(page)
                if len(ocr_text.strip()) > len(text.strip()):
                    text = ocr_text
                    ocr_pages += 1

            pages.append(ParsedPage(index=page.number, content=text, has_images=bool(page.get_images())))

        return ParsedDocument(page_count=doc.page_count, pages=pages, ocr_pages=ocr_pages)
    finally:
        doc.close()


def find_staged_files(stage_dir: Path, folder: str = "%") -> List[Tuple[str, Path]]:
    """Staged PDFs whose relative path matches the folder filter, as (filepath, path)."""
    matcher = like_to_regex(folder)
    staged = []
    for path in sorted(stage_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() != ".pdf":
            continue
        filepath = path.relative_to(stage_dir).as_posix()
        if matcher.match(filepath):
            staged.append((filepath, path))
    return staged


def parse_staged_documents(
    store: DocumentStore,
    stage_dir: Path,
    folder: str = "%",
    mode: ParseMode = ParseMode.OCR,
    ocr_fallback: bool = True,
) -> StageResult:
    """
    Parse every staged PDF that has no page rows yet.

    Args:
        store: Document store receiving the page rows
        stage_dir: Root of the staging directory
        folder: SQL LIKE filter on the relative path
        mode: Parse mode
        ocr_fallback: Whether to OCR pages without a text layer

    Returns:
        StageResult; files that fail to parse are counted and skipped
    """
    start_time = time.time()
    result = StageResult(stage="parse")

    if not stage_dir.is_dir():
        logger.warning(f"Stage directory not found: {stage_dir}")
        return result

    already_parsed = store.parsed_filepaths()
    staged = find_staged_files(stage_dir, folder)
    pending = [(fp, path) for fp, path in staged if fp not in already_parsed]
    result.selected = len(pending)
    result.skipped = len(staged) - len(pending)

    logger.info(f"Found {len(staged)} staged PDFs, {len(pending)} to parse")

    for filepath, path in pending:
        file_start = time.time()
        try:
            parsed = parse_document(path, mode, ocr_fallback)
        except ParseError as e:
            logger.error(f"Failed to parse {filepath}: {e}")
            result.failed += 1
            result.errors[filepath] = str(e)
            continue

        if not parsed.pages:
            # Nothing to insert, so the file stays pending and is reported on every run
            logger.error(f"Failed to parse {filepath}: document has no pages")
            result.failed += 1
            result.errors[filepath] = "no pages"
            continue

        store.insert_document(filepath, path.name, parsed)
        result.succeeded += 1
        log_ingestion_event(
            audit_logger,
            filepath=filepath,
            pages=parsed.page_count,
            mode=mode.value,
            ocr_pages=parsed.ocr_pages,
            processing_time_ms=(time.time() - file_start) * 1000,
        )

    result.elapsed_ms = (time.time() - start_time) * 1000
    logger.info(f"Completed parsing: {result.succeeded}/{result.selected} files processed")
    log_stage_event(
        audit_logger,
        stage=result.stage,
        selected=result.selected,
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
        execution_time_ms=result.elapsed_ms,
        folder=folder,
    )
    return result
