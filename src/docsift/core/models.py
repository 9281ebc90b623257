"""Records shared by the store, the stages and the index publisher."""

from datetime import datetime
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field

# Sentinel the extraction model emits for a field it could not read
NONE_SENTINEL = "None"

DOCUMENT_FIELDS = ("title", "print_date", "language", "summary", "signatures")


class ParsedPage(BaseModel):
    """One page returned by the parser."""
    index: int
    content: str = ""
    has_images: bool = False


class ParsedDocument(BaseModel):
    """Parse contract: page count plus ordered pages."""
    page_count: int
    pages: List[ParsedPage] = Field(default_factory=list)
    ocr_pages: int = 0


class DocumentRef(BaseModel):
    """Identity of a document plus the page count used for strategy selection."""
    filepath: str
    filename: str
    page_count: int

    @property
    def key(self) -> Tuple[str, str]:
        return (self.filepath, self.filename)


class Signature(BaseModel):
    """A handwritten signature: name, professional title, date."""
    name: str = ""
    title: str = ""
    date: str = ""

    @property
    def is_valid(self) -> bool:
        # Title is optional business data; name and date are required
        return (
            self.name not in ("", NONE_SENTINEL)
            and self.date not in ("", NONE_SENTINEL)
        )

    def as_line(self) -> str:
        return f"Signature: {self.name} | Title: {self.title} | Date: {self.date}"

    def __str__(self) -> str:
        return f"{self.name} | {self.title} | {self.date}"


class PageRecord(BaseModel):
    """A row of the page table: raw content plus a copy of the document attributes."""
    filepath: str
    filename: str
    page_count: int
    page_index: int
    content: str = ""
    title: Optional[str] = None
    print_date: Optional[str] = None
    language: Optional[str] = None
    summary: Optional[str] = None
    signatures: Optional[List[Signature]] = None
    signatures_checked_at: Optional[datetime] = None
    has_images: bool = False
    parsed_at: Optional[datetime] = None

    @property
    def ref(self) -> DocumentRef:
        return DocumentRef(filepath=self.filepath, filename=self.filename, page_count=self.page_count)

    @property
    def is_canonical(self) -> bool:
        return self.page_index == 0


class ChunkRecord(BaseModel):
    """A searchable chunk with the flat attribute columns the index filters on."""
    filepath: str
    filename: str
    page_index: int
    page_count: int
    chunk_index: int
    chunk: str
    header_1: Optional[str] = None
    header_2: Optional[str] = None
    title: Optional[str] = None
    print_date: Optional[str] = None
    language: Optional[str] = None
    summary: Optional[str] = None
    signatures: Optional[List[Signature]] = None
    file_url: Optional[str] = None

    @property
    def chunk_id(self) -> str:
        return f"{self.filepath}#{self.page_index}:{self.chunk_index}"

    def attributes(self) -> dict:
        """Filterable attributes published alongside the chunk text."""
        return {
            "title": self.title,
            "filename": self.filename,
            "filepath": self.filepath,
            "language": self.language,
            "print_date": self.print_date,
            "summary": self.summary,
            "header_1": self.header_1,
            "header_2": self.header_2,
            "page_index": self.page_index,
        }


class SignatureRow(BaseModel):
    """One valid signature joined with its document identity."""
    filepath: str
    filename: str
    title: Optional[str] = None
    print_date: Optional[str] = None
    signature_raw: str
    signer_name: str
    signer_title: str
    signature_date: str


class DocumentStatus(BaseModel):
    """Which document-level fields are populated on the canonical page."""
    filepath: str
    filename: str
    page_count: int
    title: bool
    print_date: bool
    language: bool
    summary: bool
    signatures: bool
    signatures_checked: bool

    @property
    def missing(self) -> List[str]:
        return [name for name in ("title", "print_date", "language", "summary")
                if not getattr(self, name)]


class Figure(BaseModel):
    """Figure number, title and image references found on one page."""
    filepath: str
    filename: str
    page_index: int
    figure_number: Optional[str] = None
    figure_title: Optional[str] = None
    image_references: Optional[str] = None
    extracted_at: Optional[datetime] = None
