"""Document store: the page table, the chunk table, the figure table and the signature view.

Every enrichment stage selects its work with a predicate over page 0
("field IS NULL") and writes back guarded by the same predicate, so
re-runs and concurrent runs converge on the same state.
"""

import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union
import logging

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from .errors import StorageError
from .models import (
    ChunkRecord,
    DocumentRef,
    DocumentStatus,
    Figure,
    PageRecord,
    ParsedDocument,
    Signature,
    SignatureRow,
)

logger = logging.getLogger(__name__)

# Record field -> column in parsed_document
COLUMNS: Dict[str, str] = {
    "title": "title",
    "print_date": "print_date",
    "language": "language",
    "summary": "summary",
    "signatures": "hand_signatures",
    "signatures_checked_at": "signatures_checked_at",
}

PROPAGATED_FIELDS = ("title", "print_date", "language", "summary", "signatures")

PAGE_SEPARATOR = "\n\n"


def like_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a SQL LIKE pattern into an anchored regular expression."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def _populated(value: Any) -> bool:
    return value is not None and value != ""


def _column(field: str) -> str:
    try:
        return COLUMNS[field]
    except KeyError:
        raise ValueError(f"Unknown document field: {field}")


Fields = Union[str, Sequence[str]]


def _fields(fields: Fields) -> Tuple[str, ...]:
    """One field name or several, validated against the page columns."""
    names = (fields,) if isinstance(fields, str) else tuple(fields)
    if not names:
        raise ValueError("At least one document field is required")
    for name in names:
        _column(name)
    return names


class DocumentStore(ABC):
    """Storage contract shared by the pipeline stages."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and views if they do not exist."""

    @abstractmethod
    def parsed_filepaths(self) -> Set[str]:
        """Filepaths that already have page rows."""

    @abstractmethod
    def insert_document(self, filepath: str, filename: str, parsed: ParsedDocument) -> int:
        """Insert all pages of one parsed document atomically. Returns pages written."""

    @abstractmethod
    def documents_missing(
        self,
        field: Fields,
        folder: str = "%",
        max_pages: Optional[int] = None,
        min_pages: Optional[int] = None,
    ) -> List[DocumentRef]:
        """Documents whose page-0 value of ``field`` is null (every one of them, when several)."""

    @abstractmethod
    def leading_pages_text(self, doc: DocumentRef, limit: int) -> str:
        """Content of pages ``0..limit-1`` in page order, joined by a blank line."""

    @abstractmethod
    def write_document_fields(self, doc: DocumentRef, values: Dict[str, Any], guard: Fields) -> bool:
        """Write ``values`` to page 0 only while every ``guard`` column is still null."""

    @abstractmethod
    def propagate(self, folder: str = "%") -> int:
        """Copy page-0 fields onto pages where they are null. Returns pages touched."""

    @abstractmethod
    def pages(self, folder: str = "%") -> List[PageRecord]:
        """All pages ordered by document then page index."""

    @abstractmethod
    def replace_chunks(self, chunks: List[ChunkRecord]) -> int:
        """Swap the whole chunk set for ``chunks``."""

    @abstractmethod
    def chunks(self, folder: str = "%") -> List[ChunkRecord]:
        """Current chunk set in document, page, chunk order."""

    @abstractmethod
    def document_status(self, folder: str = "%") -> List[DocumentStatus]:
        """Per-document populated/missing report."""

    @abstractmethod
    def signature_rows(self, folder: str = "%") -> List[SignatureRow]:
        """One row per stored signature, joined with document identity."""

    @abstractmethod
    def pages_missing_figures(self, folder: str = "%") -> List[PageRecord]:
        """Pages with embedded images and no figure row yet."""

    @abstractmethod
    def insert_figure(self, figure: Figure) -> bool:
        """Store the figure row for a page unless one exists. Returns whether it was written."""

    @abstractmethod
    def figures(self, folder: str = "%") -> List[Figure]:
        """Figure rows ordered by document then page index."""

    def stats(self, folder: str = "%") -> Dict[str, Any]:
        statuses = self.document_status(folder)
        chunks = self.chunks(folder)
        return {
            "total_documents": len(statuses),
            "total_pages": sum(s.page_count for s in statuses),
            "with_title": sum(1 for s in statuses if s.title),
            "with_summary": sum(1 for s in statuses if s.summary),
            "with_signatures": sum(1 for s in statuses if s.signatures),
            "total_chunks": len(chunks),
            "chunks_with_signatures": sum(1 for c in chunks if "--- Handwritten Signatures ---" in c.chunk),
            "pages_with_figures": len(self.figures(folder)),
        }


def _signature_rows_for(page: PageRecord) -> List[SignatureRow]:
    return [
        SignatureRow(
            filepath=page.filepath,
            filename=page.filename,
            title=page.title,
            print_date=page.print_date,
            signature_raw=str(sig),
            signer_name=sig.name,
            signer_title=sig.title,
            signature_date=sig.date,
        )
        for sig in page.signatures or []
    ]


class InMemoryDocumentStore(DocumentStore):
    """Process-local store with the same guards as the PostgreSQL tables."""

    def __init__(self):
        self._pages: Dict[Tuple[str, str, int], PageRecord] = {}
        self._chunks: List[ChunkRecord] = []
        self._figures: Dict[Tuple[str, str, int], Figure] = {}
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        return None

    def _canonical(self, folder: str) -> List[PageRecord]:
        matcher = like_to_regex(folder)
        return sorted(
            (p for p in self._pages.values() if p.page_index == 0 and matcher.match(p.filepath)),
            key=lambda p: (p.filepath, p.filename),
        )

    def parsed_filepaths(self) -> Set[str]:
        return {p.filepath for p in self._pages.values()}

    def insert_document(self, filepath: str, filename: str, parsed: ParsedDocument) -> int:
        now = datetime.now(timezone.utc)
        rows = {
            (filepath, filename, page.index): PageRecord(
                filepath=filepath,
                filename=filename,
                page_count=parsed.page_count,
                page_index=page.index,
                content=page.content,
                has_images=page.has_images,
                parsed_at=now,
            )
            for page in parsed.pages
        }
        with self._lock:
            self._pages.update(rows)
        return len(rows)

    def add_page(self, page: PageRecord) -> None:
        """Insert or replace a single page row."""
        with self._lock:
            self._pages[(page.filepath, page.filename, page.page_index)] = page

    def get_page(self, filepath: str, filename: str, page_index: int) -> Optional[PageRecord]:
        return self._pages.get((filepath, filename, page_index))

    def documents_missing(self, field, folder="%", max_pages=None, min_pages=None):
        fields = _fields(field)
        refs = []
        for page in self._canonical(folder):
            if any(getattr(page, name) is not None for name in fields):
                continue
            if max_pages is not None and page.page_count > max_pages:
                continue
            if min_pages is not None and page.page_count < min_pages:
                continue
            refs.append(page.ref)
        return refs

    def leading_pages_text(self, doc: DocumentRef, limit: int) -> str:
        pages = sorted(
            (p for (fp, fn, idx), p in self._pages.items()
             if fp == doc.filepath and fn == doc.filename and idx < limit),
            key=lambda p: p.page_index,
        )
        return PAGE_SEPARATOR.join(p.content for p in pages if p.content is not None)

    def write_document_fields(self, doc: DocumentRef, values: Dict[str, Any], guard: Fields) -> bool:
        guards = _fields(guard)
        _fields(list(values))
        with self._lock:
            page = self._pages.get((doc.filepath, doc.filename, 0))
            if page is None or any(getattr(page, name) is not None for name in guards):
                return False
            self._pages[(doc.filepath, doc.filename, 0)] = page.model_copy(update=values)
            return True

    def propagate(self, folder: str = "%") -> int:
        touched = 0
        with self._lock:
            sources = {
                (p.filepath, p.filename): p
                for p in self._canonical(folder)
                if p.title is not None
            }
            for key, page in list(self._pages.items()):
                src = sources.get((page.filepath, page.filename))
                if src is None or page.page_index == 0:
                    continue
                update = {
                    field: getattr(src, field)
                    for field in PROPAGATED_FIELDS
                    if getattr(page, field) is None and getattr(src, field) is not None
                }
                if update:
                    self._pages[key] = page.model_copy(update=update)
                    touched += 1
        return touched

    def pages(self, folder: str = "%") -> List[PageRecord]:
        matcher = like_to_regex(folder)
        return sorted(
            (p for p in self._pages.values() if matcher.match(p.filepath)),
            key=lambda p: (p.filepath, p.filename, p.page_index),
        )

    def replace_chunks(self, chunks: List[ChunkRecord]) -> int:
        new_set = list(chunks)
        with self._lock:
            self._chunks = new_set
        return len(new_set)

    def chunks(self, folder: str = "%") -> List[ChunkRecord]:
        matcher = like_to_regex(folder)
        return [c for c in self._chunks if matcher.match(c.filepath)]

    def document_status(self, folder: str = "%") -> List[DocumentStatus]:
        return [
            DocumentStatus(
                filepath=p.filepath,
                filename=p.filename,
                page_count=p.page_count,
                title=_populated(p.title),
                print_date=_populated(p.print_date),
                language=_populated(p.language),
                summary=_populated(p.summary),
                signatures=bool(p.signatures),
                signatures_checked=p.signatures_checked_at is not None,
            )
            for p in self._canonical(folder)
        ]

    def signature_rows(self, folder: str = "%") -> List[SignatureRow]:
        rows: List[SignatureRow] = []
        for page in self._canonical(folder):
            rows.extend(_signature_rows_for(page))
        return rows

    def pages_missing_figures(self, folder: str = "%") -> List[PageRecord]:
        return [
            page for page in self.pages(folder)
            if page.has_images and (page.filepath, page.filename, page.page_index) not in self._figures
        ]

    def insert_figure(self, figure: Figure) -> bool:
        key = (figure.filepath, figure.filename, figure.page_index)
        with self._lock:
            if key in self._figures:
                return False
            self._figures[key] = figure.model_copy(
                update={"extracted_at": figure.extracted_at or datetime.now(timezone.utc)}
            )
            return True

    def figures(self, folder: str = "%") -> List[Figure]:
        matcher = like_to_regex(folder)
        return [
            figure for key, figure in sorted(self._figures.items())
            if matcher.match(figure.filepath)
        ]


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS parsed_document (
        filepath TEXT NOT NULL,
        filename TEXT NOT NULL,
        page_count INT NOT NULL,
        page_index INT NOT NULL,
        page_content TEXT,
        parsed_at TIMESTAMPTZ DEFAULT now(),
        PRIMARY KEY (filepath, filename, page_index)
    )
    """,
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS title TEXT",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS print_date TEXT",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS language TEXT",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS summary TEXT",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS hand_signatures JSONB",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS signatures_checked_at TIMESTAMPTZ",
    "ALTER TABLE parsed_document ADD COLUMN IF NOT EXISTS has_images BOOLEAN NOT NULL DEFAULT FALSE",
    """
    CREATE TABLE IF NOT EXISTS doc_chunk (
        filepath TEXT NOT NULL,
        filename TEXT NOT NULL,
        page_index INT NOT NULL,
        page_count INT NOT NULL,
        chunk_index INT NOT NULL,
        chunk TEXT NOT NULL,
        header_1 TEXT,
        header_2 TEXT,
        title TEXT,
        print_date TEXT,
        language TEXT,
        summary TEXT,
        hand_signatures JSONB,
        created_at TIMESTAMPTZ DEFAULT now(),
        PRIMARY KEY (filepath, filename, page_index, chunk_index)
    )
    """,
    "ALTER TABLE doc_chunk ADD COLUMN IF NOT EXISTS file_url TEXT",
    """
    CREATE TABLE IF NOT EXISTS page_figures (
        filepath TEXT NOT NULL,
        filename TEXT NOT NULL,
        page_index INT NOT NULL,
        figure_number TEXT,
        figure_title TEXT,
        image_references TEXT,
        extracted_at TIMESTAMPTZ DEFAULT now(),
        PRIMARY KEY (filepath, filename, page_index)
    )
    """,
    """
    CREATE OR REPLACE VIEW v_hand_signatures AS
    SELECT
        p.filepath,
        p.filename,
        p.title,
        p.print_date,
        concat_ws(' | ', s.value->>'name', s.value->>'title', s.value->>'date') AS signature_raw,
        s.value->>'name' AS signer_name,
        s.value->>'title' AS signer_title,
        s.value->>'date' AS signature_date,
        s.position AS signature_position
    FROM parsed_document p,
    LATERAL jsonb_array_elements(p.hand_signatures) WITH ORDINALITY s(value, position)
    WHERE p.page_index = 0
      AND p.hand_signatures IS NOT NULL
      AND jsonb_array_length(p.hand_signatures) > 0
    """,
]

_PAGE_COLUMNS = (
    "filepath, filename, page_count, page_index, page_content, title, print_date, "
    "language, summary, hand_signatures, signatures_checked_at, has_images, parsed_at"
)

_CHUNK_COLUMNS = (
    "filepath, filename, page_index, page_count, chunk_index, chunk, header_1, header_2, "
    "title, print_date, language, summary, hand_signatures, file_url"
)

_FIGURE_COLUMNS = "filepath, filename, page_index, figure_number, figure_title, image_references, extracted_at"


def _page_from_row(row: Tuple[Any, ...]) -> PageRecord:
    return PageRecord(
        filepath=row[0],
        filename=row[1],
        page_count=row[2],
        page_index=row[3],
        content=row[4] or "",
        title=row[5],
        print_date=row[6],
        language=row[7],
        summary=row[8],
        signatures=_signatures_from_db(row[9]),
        signatures_checked_at=row[10],
        has_images=bool(row[11]),
        parsed_at=row[12],
    )


def _all_null(fields: Fields) -> sql.Composed:
    """`a IS NULL AND b IS NULL ...` over the columns of ``fields``."""
    return sql.SQL(" AND ").join(
        sql.SQL("{} IS NULL").format(sql.Identifier(_column(name))) for name in _fields(fields)
    )


def _signatures_from_db(value: Any) -> Optional[List[Signature]]:
    if value is None:
        return None
    return [Signature(**item) for item in value]


def _signatures_to_db(value: Any) -> Optional[Jsonb]:
    if value is None:
        return None
    return Jsonb([sig.model_dump() if isinstance(sig, Signature) else dict(sig) for sig in value])


class PostgresDocumentStore(DocumentStore):
    """Document store on PostgreSQL. One connection per operation."""

    def __init__(self, db_url: str):
        self.db_url = db_url

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        try:
            with psycopg.connect(self.db_url) as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg.Error as e:
            raise StorageError(f"Database operation failed: {e}") from e

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        logger.info("Schema ensured for parsed_document, doc_chunk, page_figures, v_hand_signatures")

    def parsed_filepaths(self) -> Set[str]:
        with self._cursor() as cur:
            cur.execute("SELECT DISTINCT filepath FROM parsed_document")
            return {row[0] for row in cur.fetchall()}

    def insert_document(self, filepath: str, filename: str, parsed: ParsedDocument) -> int:
        rows = [
            (filepath, filename, parsed.page_count, page.index, page.content, page.has_images)
            for page in parsed.pages
        ]
        with self._cursor() as cur:
            cur.executemany(
                """
                INSERT INTO parsed_document (filepath, filename, page_count, page_index, page_content, has_images)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (filepath, filename, page_index) DO NOTHING
                """,
                rows,
            )
        return len(rows)

    def documents_missing(self, field, folder="%", max_pages=None, min_pages=None):
        query = sql.SQL(
            "SELECT filepath, filename, page_count FROM parsed_document "
            "WHERE page_index = 0 AND {missing} AND filepath LIKE %s"
        ).format(missing=_all_null(field))
        params: List[Any] = [folder]
        if max_pages is not None:
            query += sql.SQL(" AND page_count <= %s")
            params.append(max_pages)
        if min_pages is not None:
            query += sql.SQL(" AND page_count >= %s")
            params.append(min_pages)
        query += sql.SQL(" ORDER BY filepath, filename")

        with self._cursor() as cur:
            cur.execute(query, params)
            return [
                DocumentRef(filepath=row[0], filename=row[1], page_count=row[2])
                for row in cur.fetchall()
            ]

    def leading_pages_text(self, doc: DocumentRef, limit: int) -> str:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT page_content FROM parsed_document
                WHERE filepath = %s AND filename = %s AND page_index < %s
                ORDER BY page_index
                """,
                (doc.filepath, doc.filename, limit),
            )
            return PAGE_SEPARATOR.join(row[0] for row in cur.fetchall() if row[0] is not None)

    def write_document_fields(self, doc: DocumentRef, values: Dict[str, Any], guard: Fields) -> bool:
        assignments = []
        params: List[Any] = []
        for field, value in values.items():
            assignments.append(
                sql.SQL("{column} = %s").format(column=sql.Identifier(_column(field)))
            )
            params.append(_signatures_to_db(value) if field == "signatures" else value)

        query = sql.SQL(
            "UPDATE parsed_document SET {assignments} "
            "WHERE filepath = %s AND filename = %s AND page_index = 0 AND {guard}"
        ).format(
            assignments=sql.SQL(", ").join(assignments),
            guard=_all_null(guard),
        )
        params.extend([doc.filepath, doc.filename])

        with self._cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount > 0

    def propagate(self, folder: str = "%") -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE parsed_document p
                SET
                    title = COALESCE(p.title, src.title),
                    print_date = COALESCE(p.print_date, src.print_date),
                    language = COALESCE(p.language, src.language),
                    summary = COALESCE(p.summary, src.summary),
                    hand_signatures = COALESCE(p.hand_signatures, src.hand_signatures)
                FROM (
                    SELECT filepath, filename, title, print_date, language, summary, hand_signatures
                    FROM parsed_document
                    WHERE page_index = 0
                      AND title IS NOT NULL
                      AND filepath LIKE %s
                ) src
                WHERE p.filepath = src.filepath
                  AND p.filename = src.filename
                  AND p.page_index > 0
                  AND (
                      p.title IS NULL
                      OR (p.print_date IS NULL AND src.print_date IS NOT NULL)
                      OR (p.language IS NULL AND src.language IS NOT NULL)
                      OR (p.summary IS NULL AND src.summary IS NOT NULL)
                      OR (p.hand_signatures IS NULL AND src.hand_signatures IS NOT NULL)
                  )
                """,
                (folder,),
            )
            return cur.rowcount

    def pages(self, folder: str = "%") -> List[PageRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PAGE_COLUMNS} FROM parsed_document "
                "WHERE filepath LIKE %s ORDER BY filepath, filename, page_index",
                (folder,),
            )
            return [_page_from_row(row) for row in cur.fetchall()]

    def replace_chunks(self, chunks: List[ChunkRecord]) -> int:
        rows = [
            (
                c.filepath, c.filename, c.page_index, c.page_count, c.chunk_index, c.chunk,
                c.header_1, c.header_2, c.title, c.print_date, c.language, c.summary,
                _signatures_to_db(c.signatures), c.file_url,
            )
            for c in chunks
        ]
        # Readers keep seeing the previous set until this transaction commits
        with self._cursor() as cur:
            cur.execute("DELETE FROM doc_chunk")
            cur.executemany(
                f"INSERT INTO doc_chunk ({_CHUNK_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                rows,
            )
        logger.info(f"Replaced chunk set with {len(rows)} chunks")
        return len(rows)

    def chunks(self, folder: str = "%") -> List[ChunkRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM doc_chunk WHERE filepath LIKE %s "
                "ORDER BY filepath, filename, page_index, chunk_index",
                (folder,),
            )
            return [
                ChunkRecord(
                    filepath=row[0],
                    filename=row[1],
                    page_index=row[2],
                    page_count=row[3],
                    chunk_index=row[4],
                    chunk=row[5],
                    header_1=row[6],
                    header_2=row[7],
                    title=row[8],
                    print_date=row[9],
                    language=row[10],
                    summary=row[11],
                    signatures=_signatures_from_db(row[12]),
                    file_url=row[13],
                )
                for row in cur.fetchall()
            ]

    def document_status(self, folder: str = "%") -> List[DocumentStatus]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT filepath, filename, page_count, title, print_date, language, summary,
                       hand_signatures IS NOT NULL AND jsonb_array_length(hand_signatures) > 0,
                       signatures_checked_at IS NOT NULL
                FROM parsed_document
                WHERE page_index = 0 AND filepath LIKE %s
                ORDER BY filepath, filename
                """,
                (folder,),
            )
            return [
                DocumentStatus(
                    filepath=row[0],
                    filename=row[1],
                    page_count=row[2],
                    title=_populated(row[3]),
                    print_date=_populated(row[4]),
                    language=_populated(row[5]),
                    summary=_populated(row[6]),
                    signatures=bool(row[7]),
                    signatures_checked=bool(row[8]),
                )
                for row in cur.fetchall()
            ]

    def signature_rows(self, folder: str = "%") -> List[SignatureRow]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT filepath, filename, title, print_date, signature_raw,
                       signer_name, signer_title, signature_date
                FROM v_hand_signatures
                WHERE filepath LIKE %s
                ORDER BY filepath, filename, signature_position
                """,
                (folder,),
            )
            return [
                SignatureRow(
                    filepath=row[0],
                    filename=row[1],
                    title=row[2],
                    print_date=row[3],
                    signature_raw=row[4],
                    signer_name=row[5] or "",
                    signer_title=row[6] or "",
                    signature_date=row[7] or "",
                )
                for row in cur.fetchall()
            ]

    def pages_missing_figures(self, folder: str = "%") -> List[PageRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PAGE_COLUMNS} FROM parsed_document p "
                "WHERE p.has_images AND p.filepath LIKE %s "
                "AND NOT EXISTS ("
                "    SELECT 1 FROM page_figures f"
                "    WHERE f.filepath = p.filepath AND f.filename = p.filename AND f.page_index = p.page_index"
                ") ORDER BY filepath, filename, page_index",
                (folder,),
            )
            return [_page_from_row(row) for row in cur.fetchall()]

    def insert_figure(self, figure: Figure) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO page_figures (filepath, filename, page_index, figure_number, figure_title, image_references)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (filepath, filename, page_index) DO NOTHING
                """,
                (
                    figure.filepath, figure.filename, figure.page_index,
                    figure.figure_number, figure.figure_title, figure.image_references,
                ),
            )
            return cur.rowcount > 0

    def figures(self, folder: str = "%") -> List[Figure]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_FIGURE_COLUMNS} FROM page_figures WHERE filepath LIKE %s "
                "ORDER BY filepath, filename, page_index",
                (folder,),
            )
            return [
                Figure(
                    filepath=row[0],
                    filename=row[1],
                    page_index=row[2],
                    figure_number=row[3],
                    figure_title=row[4],
                    image_references=row[5],
                    extracted_at=row[6],
                )
                for row in cur.fetchall()
            ]
