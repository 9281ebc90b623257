"""Exception classes for the enrichment pipeline."""


class DocsiftError(Exception):
    """Base exception for pipeline errors."""
    pass


class ConfigurationError(DocsiftError):
    """Raised when pipeline configuration is malformed. Aborts the run."""
    pass


class StorageError(DocsiftError):
    """Raised when the document store cannot be read or written. Aborts the run."""
    pass


class ParseError(DocsiftError):
    """Raised when a staged file cannot be parsed into pages."""
    pass


class ExtractionError(DocsiftError):
    """Raised when an extraction or summarization call fails after retries."""
    pass
