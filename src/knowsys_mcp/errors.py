"""Error taxonomy for the index and query engine.

Every error carries a stable ``code`` so that the query boundary can turn it into
a typed result instead of letting it escape to callers.
"""

from pathlib import Path


class KnowsysError(Exception):
    """Base class for all index errors."""

    code = "knowsys_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ParseError(KnowsysError):
    """A source file could not be turned into a Document."""

    code = "parse_error"

    def __init__(self, message: str, line: int | None = None, path: str | None = None):
        super().__init__(message)
        self.line = line
        self.path = path

    def __str__(self) -> str:
        location = self.path or "<text>"
        if self.line is not None:
            location = f"{location}:{self.line}"
        return f"{location}: {self.message}"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "line": self.line, "path": self.path}


class InvalidMetadata(ParseError):
    """The metadata header is malformed or holds an invalid value."""

    code = "invalid_metadata"


class IndexNotInitialized(KnowsysError):
    """The index has never been built."""

    code = "index_not_initialized"

    def __init__(self, index_path: Path):
        super().__init__(f"Index at {index_path} has not been built yet; run rebuild() first")
        self.index_path = index_path


class IndexCorrupted(KnowsysError):
    """The index file exists but cannot be read. Recover with rebuild()."""

    code = "index_corrupted"

    def __init__(self, index_path: Path, reason: str):
        super().__init__(f"Index at {index_path} is corrupted ({reason}); run rebuild()")
        self.index_path = index_path


class SectionNotFound(KnowsysError):
    """No heading matches the requested section name."""

    code = "section_not_found"

    def __init__(self, section: str, document_id: str | None = None):
        if document_id:
            message = f"Section '{section}' not found in {document_id}"
        else:
            message = f"Section '{section}' not found"
        super().__init__(message)
        self.section = section
        self.document_id = document_id


class InvalidFilterCombination(KnowsysError):
    """The query parameters cannot be evaluated against this index."""

    code = "invalid_filter_combination"


class DuplicateDocumentId(KnowsysError):
    """Two sources resolve to the same (kind, id)."""

    code = "duplicate_document_id"

    def __init__(self, kind: str, document_id: str, paths: list[str]):
        super().__init__(
            f"Duplicate {kind} id '{document_id}' in: {', '.join(sorted(paths))}"
        )
        self.kind = kind
        self.document_id = document_id
        self.paths = paths


class DocumentNotFound(KnowsysError):
    """No indexed document has the requested id."""

    code = "document_not_found"

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class InvalidStatusTransition(KnowsysError):
    """A plan status change is not allowed from its current status."""

    code = "invalid_status_transition"


class ReadOnlyError(KnowsysError):
    """Raised when a write is attempted in read-only mode."""

    code = "read_only"
