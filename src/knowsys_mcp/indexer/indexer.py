"""Build pass that turns the source tree into index entries.

The filesystem is always the source of truth. Both backends call into this
module on rebuild and after every write, so a document looks the same no matter
which backend ends up storing it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from knowsys_mcp.errors import DuplicateDocumentId, ParseError
from knowsys_mcp.indexer.models import Document, RebuildReport
from knowsys_mcp.indexer.parser import ParseResult, parse
from knowsys_mcp.indexer.walker import SourceFile, read_source, walk_workspace

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Documents that parsed cleanly plus the report of those that did not."""

    documents: list[Document] = field(default_factory=list)
    report: RebuildReport = field(default_factory=RebuildReport)


def document_from_source(source: SourceFile) -> ParseResult:
    """Parse one discovered file and stamp it with its checksum and mtime."""
    try:
        content = source.content.decode("utf-8")
    except UnicodeDecodeError as e:
        return ParseResult(
            error=ParseError(f"Invalid UTF-8 encoding: {e}", path=source.relative_path)
        )

    result = parse(content, source.relative_path)
    if result.document is not None:
        result.document.checksum = source.content_hash
        result.document.mtime = source.mtime
    return result


def load_document(root: Path, relative_path: str) -> Document:
    """
    Re-read a single source after a write.

    Raises:
        ParseError: if the file no longer parses
    """
    return document_from_source(read_source(root, relative_path)).unwrap()


def check_unique_ids(documents: list[Document]) -> None:
    """
    Reject two sources that resolve to the same (kind, id).

    Raises:
        DuplicateDocumentId: for the first colliding key in sorted order
    """
    paths: dict[tuple[str, str], list[str]] = defaultdict(list)
    for doc in documents:
        paths[(doc.kind.value, doc.id)].append(doc.source_path)

    for (kind, doc_id), sources in sorted(paths.items()):
        if len(sources) > 1:
            raise DuplicateDocumentId(kind, doc_id, sources)


def build_documents(root: Path) -> BuildResult:
    """
    Parse every source under ``root``.

    A file that fails to parse is logged and reported, never fatal. Id
    collisions are fatal because silently keeping one of the two would hide
    the other.

    Raises:
        DuplicateDocumentId: if two sources share a (kind, id)
    """
    logger.info("Building index from %s", root)
    result = BuildResult()

    for source in walk_workspace(root):
        parsed = document_from_source(source)
        if parsed.error is not None:
            error = parsed.error
            logger.warning(
                "Skipping %s (line %s): %s",
                error.path or source.relative_path,
                error.line if error.line is not None else "-",
                error.message,
            )
            result.report.errors.append(error)
            continue
        result.documents.append(parsed.unwrap())

    check_unique_ids(result.documents)

    result.documents.sort(key=lambda d: (d.kind.value, d.id))
    result.report.indexed = len(result.documents)
    logger.info(
        "Build complete: %d documents indexed, %d skipped",
        result.report.indexed,
        len(result.report.errors),
    )
    return result
