"""Parser for YAML metadata headers and sectioned bodies."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any

import yaml

from knowsys_mcp.errors import InvalidMetadata, ParseError
from knowsys_mcp.indexer.models import (
    KIND_FOLDER_MAP,
    Document,
    DocumentKind,
    PlanStatus,
    normalize_author,
    normalize_date,
)
from knowsys_mcp.indexer.sections import split_sections

logger = logging.getLogger(__name__)

HEADER_DELIMITER = "---"

# Mapping from folder name to document kind
FOLDER_KIND_MAP = {folder: kind for kind, folder in KIND_FOLDER_MAP.items()}

# Header keys accepted under another name
KEY_ALIASES = {
    "type": "kind",
    "created": "date",
    "createdAt": "date",
    "tags": "topics",
}

RECOGNIZED_KEYS = {"id", "kind", "date", "status", "author", "topics", "title"}

# Header key order when writing a new document
HEADER_ORDER = ("id", "type", "date", "status", "author", "title", "topics")

DATE_PREFIX_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})")


@dataclass
class Frontmatter:
    """A file split into its metadata header and body."""

    raw: dict = field(default_factory=dict)
    header: str = ""  # Header text including delimiters and following blank lines
    body: str = ""
    lines: list[str] = field(default_factory=list)  # Header lines, for error locations


@dataclass
class ParseResult:
    """Either a Document or the ParseError explaining why there is none."""

    document: Document | None = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Document:
        if self.error is not None:
            raise self.error
        assert self.document is not None
        return self.document


def split_frontmatter(content: str, path: str | None = None) -> Frontmatter:
    """
    Split a leading ``---`` delimited YAML block from the body.

    Content without a header is all body.

    Raises:
        InvalidMetadata: unterminated header, YAML syntax error, or a header that
            is not a mapping. ``line`` is the 1-based line in the file.
    """
    lines = content.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != HEADER_DELIMITER:
        return Frontmatter(body=content)

    close = None
    for index in range(1, len(lines)):
        if lines[index].rstrip("\r\n") == HEADER_DELIMITER:
            close = index
            break
    if close is None:
        raise InvalidMetadata("Unterminated metadata header (missing closing '---')", line=1, path=path)

    try:
        raw = yaml.safe_load("".join(lines[1:close]))
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        # The YAML text starts on file line 2; marks are 0-based
        line = mark.line + 2 if mark is not None else 1
        problem = getattr(e, "problem", None) or str(e)
        raise InvalidMetadata(f"Invalid YAML in metadata header: {problem}", line=line, path=path) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidMetadata("Metadata header must be a key-value mapping", line=2, path=path)

    # Blank lines right after the header belong to it, not to the body
    body_start = close + 1
    while body_start < len(lines) and not lines[body_start].strip():
        body_start += 1

    return Frontmatter(
        raw=raw,
        header="".join(lines[:body_start]),
        body="".join(lines[body_start:]),
        lines=lines[: close + 1],
    )


def _key_line(frontmatter: Frontmatter, *keys: str) -> int:
    """1-based line of the first header line defining one of ``keys``."""
    pattern = re.compile(r"^(?:%s)\s*:" % "|".join(re.escape(k) for k in keys))
    for index, line in enumerate(frontmatter.lines):
        if pattern.match(line):
            return index + 1
    return 1


def _jsonable(value: Any) -> Any:
    """Reduce YAML scalars (dates, timestamps) to JSON-safe values."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _parse_topics(value: Any) -> list[str]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(v) for v in value]
    else:
        items = [str(value)]
    topics: list[str] = []
    for item in items:
        topic = item.strip()
        if topic and topic not in topics:
            topics.append(topic)
    return topics


def parse_document(content: str, path: str) -> Document:
    """
    Parse a source file into a Document.

    Args:
        content: The full file text
        path: Path relative to the workspace root (e.g., "sessions/2026-02-01-session.md")

    Raises:
        ParseError: if the kind cannot be determined
        InvalidMetadata: if the header is malformed or holds an invalid value
    """
    content = content.replace("\r\n", "\n")
    relative = PurePosixPath(path)
    frontmatter = split_frontmatter(content, path)

    meta: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in frontmatter.raw.items():
        name = KEY_ALIASES.get(str(key), str(key))
        if name in RECOGNIZED_KEYS:
            meta[name] = value
        else:
            extra[str(key)] = _jsonable(value)

    # Kind: header first, then folder
    if meta.get("kind"):
        try:
            kind = DocumentKind.parse(meta["kind"])
        except ValueError as e:
            raise InvalidMetadata(str(e), line=_key_line(frontmatter, "type", "kind"), path=path) from e
    elif relative.parts and relative.parts[0] in FOLDER_KIND_MAP:
        kind = FOLDER_KIND_MAP[relative.parts[0]]
    else:
        raise ParseError("Cannot determine document kind from metadata or folder", path=path)

    doc_id = str(meta["id"]).strip() if meta.get("id") is not None else ""
    if not doc_id:
        doc_id = relative.stem

    doc_date = None
    if meta.get("date") is not None:
        doc_date = normalize_date(meta["date"])
        if doc_date is None:
            raise InvalidMetadata(
                f"Invalid date '{meta['date']}', expected YYYY-MM-DD",
                line=_key_line(frontmatter, "date", "created", "createdAt"),
                path=path,
            )
    else:
        match = DATE_PREFIX_PATTERN.match(relative.stem)
        if match:
            doc_date = normalize_date(match.group(1))
    if kind is DocumentKind.SESSION and doc_date is None:
        raise InvalidMetadata(
            "Session has no date in its header or filename",
            line=1,
            path=path,
        )

    status = None
    if meta.get("status") is not None:
        if kind is DocumentKind.PLAN:
            try:
                status = PlanStatus.parse(meta["status"]).value
            except ValueError as e:
                raise InvalidMetadata(str(e), line=_key_line(frontmatter, "status"), path=path) from e
        else:
            status = str(meta["status"]).strip().lower() or None
    elif kind is DocumentKind.PLAN:
        status = PlanStatus.PLANNED.value

    author = normalize_author(str(meta["author"])) if meta.get("author") else None
    topics = _parse_topics(meta["topics"]) if meta.get("topics") is not None else []

    sections = split_sections(frontmatter.body)

    title = str(meta["title"]).strip() if meta.get("title") else None
    if title is None:
        title = next((s.heading for s in sections if s.level == 1), None)

    return Document(
        id=doc_id,
        kind=kind,
        date=doc_date,
        status=status,
        author=author or None,
        title=title,
        topics=topics,
        sections=sections,
        extra=extra,
        source_path=relative.as_posix(),
    )


def parse(content: str, path: str) -> ParseResult:
    """Parse without raising: malformed input comes back as ``ParseResult.error``."""
    try:
        return ParseResult(document=parse_document(content, path))
    except ParseError as e:
        if e.path is None:
            e.path = path
        return ParseResult(error=e)


def replace_body(content: str, body: str) -> str:
    """Keep the file's header text as-is and swap in a new body."""
    frontmatter = split_frontmatter(content.replace("\r\n", "\n"))
    return frontmatter.header + body


def set_header_value(content: str, key: str, value: str) -> str:
    """
    Set one scalar header key, leaving every other header line untouched.

    Adds a header when the file has none.
    """
    content = content.replace("\r\n", "\n")
    frontmatter = split_frontmatter(content)
    new_line = f"{key}: {value}\n"

    if not frontmatter.lines:
        return f"{HEADER_DELIMITER}\n{new_line}{HEADER_DELIMITER}\n\n{content}"

    lines = list(frontmatter.lines)
    pattern = re.compile(r"^%s\s*:" % re.escape(key))
    for index, line in enumerate(lines):
        if pattern.match(line):
            lines[index] = new_line
            break
    else:
        lines.insert(len(lines) - 1, new_line)

    rest = frontmatter.header[len("".join(frontmatter.lines)) :]
    return "".join(lines) + rest + frontmatter.body


def render_document(doc: Document) -> str:
    """Render a Document as a source file: YAML header, blank line, body."""
    header: dict[str, Any] = {"id": doc.id, "type": doc.kind.value}
    if doc.date:
        header["date"] = doc.date
    if doc.status:
        header["status"] = doc.status
    if doc.author:
        header["author"] = doc.author
    if doc.title:
        header["title"] = doc.title
    if doc.topics:
        header["topics"] = list(doc.topics)
    for key, value in doc.extra.items():
        if key not in header and KEY_ALIASES.get(key, key) not in RECOGNIZED_KEYS:
            header[key] = value

    ordered = {k: header[k] for k in HEADER_ORDER if k in header}
    ordered.update({k: v for k, v in header.items() if k not in ordered})

    text = yaml.safe_dump(ordered, sort_keys=False, allow_unicode=True, default_flow_style=False)
    body = doc.body
    return f"{HEADER_DELIMITER}\n{text}{HEADER_DELIMITER}\n\n{body}" if body else f"{HEADER_DELIMITER}\n{text}{HEADER_DELIMITER}\n"
