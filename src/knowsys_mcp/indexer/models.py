"""Data models for the indexer."""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from knowsys_mcp.errors import InvalidFilterCombination, ParseError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DocumentKind(str, Enum):
    """The three document families held in the index."""

    SESSION = "session"
    PLAN = "plan"
    PATTERN = "pattern"

    @property
    def folder(self) -> str:
        return KIND_FOLDER_MAP[self]

    @classmethod
    def parse(cls, value: "str | DocumentKind") -> "DocumentKind":
        if isinstance(value, DocumentKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Invalid kind '{value}'. Must be one of: {valid}") from None


KIND_FOLDER_MAP = {
    DocumentKind.SESSION: "sessions",
    DocumentKind.PLAN: "plans",
    DocumentKind.PATTERN: "learned",
}


class PlanStatus(str, Enum):
    """Lifecycle of a plan. COMPLETE and CANCELLED are terminal."""

    PLANNED = "planned"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETE, PlanStatus.CANCELLED)

    def can_transition_to(self, target: "PlanStatus") -> bool:
        return target in PLAN_TRANSITIONS[self]

    @classmethod
    def parse(cls, value: "str | PlanStatus") -> "PlanStatus":
        """Parse a status, tolerating case and decoration such as ``🎯 ACTIVE``."""
        if isinstance(value, PlanStatus):
            return value
        cleaned = re.sub(r"[^a-z]", "", str(value).lower())
        try:
            return cls(cleaned)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid plan status '{value}'. Must be one of: {valid}") from None


PLAN_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.PLANNED: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.PAUSED, PlanStatus.COMPLETE, PlanStatus.CANCELLED}),
    PlanStatus.PAUSED: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.COMPLETE: frozenset(),
    PlanStatus.CANCELLED: frozenset(),
}


def normalize_author(author: str) -> str:
    """Lower-case an identity and collapse anything but [a-z0-9] into hyphens.

    ``"Alice Smith"`` becomes ``"alice-smith"``; the result is used in pointer
    filenames and as the index key for author filters.
    """
    return re.sub(r"[^a-z0-9]+", "-", author.strip().lower()).strip("-")


def normalize_date(value: Any) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string, or None if the value is not a date."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()[:10]
    text = str(value).strip()
    if DATE_PATTERN.match(text[:10]) and (len(text) == 10 or text[10] in "T "):
        return text[:10]
    return None


@dataclass
class Section:
    """A heading and the text that follows it, up to the next heading of any level.

    Level 0 with an empty heading is the implicit section holding the text before
    the first heading (or the whole body when there are no headings).
    """

    heading: str
    level: int
    body: str

    def render(self) -> str:
        if self.level == 0:
            return self.body
        heading_line = f"{'#' * self.level} {self.heading}"
        return f"{heading_line}\n{self.body}"


@dataclass
class Document:
    """A session, plan or pattern, projected from its source file."""

    id: str
    kind: DocumentKind
    date: str | None = None
    status: str | None = None
    author: str | None = None
    title: str | None = None
    topics: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    source_path: str = ""  # Relative to the workspace root, posix separators
    checksum: str = ""
    mtime: float = 0.0

    @property
    def body(self) -> str:
        parts = [section.render() for section in self.sections]
        # Every section but the last must end its own line
        for index in range(len(parts) - 1):
            if not parts[index].endswith("\n"):
                parts[index] += "\n"
        return "".join(parts)

    def headings(self) -> list[dict]:
        return [
            {"heading": s.heading, "level": s.level}
            for s in self.sections
            if s.level > 0
        ]

    def metadata_dict(self) -> dict:
        """Everything except section bodies."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "date": self.date,
            "status": self.status,
            "author": self.author,
            "title": self.title,
            "topics": list(self.topics),
            "headings": self.headings(),
            "extra": dict(self.extra),
            "source_path": self.source_path,
            "checksum": self.checksum,
            "mtime": self.mtime,
        }

    def to_dict(self) -> dict:
        data = self.metadata_dict()
        data.pop("headings")
        data["sections"] = [
            {"heading": s.heading, "level": s.level, "body": s.body} for s in self.sections
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        return cls(
            id=data["id"],
            kind=DocumentKind.parse(data["kind"]),
            date=data.get("date"),
            status=data.get("status"),
            author=data.get("author"),
            title=data.get("title"),
            topics=list(data.get("topics") or []),
            sections=[
                Section(heading=s["heading"], level=int(s["level"]), body=s["body"])
                for s in data.get("sections") or []
            ],
            extra=dict(data.get("extra") or {}),
            source_path=data.get("source_path", ""),
            checksum=data.get("checksum", ""),
            mtime=float(data.get("mtime", 0.0)),
        )


FILTER_ALIASES = {
    "dateAfter": "date_after",
    "dateBefore": "date_before",
}


@dataclass
class QueryFilter:
    """Predicates ANDed together; a field left as None matches everything."""

    id: str | None = None
    kind: DocumentKind | None = None
    date: str | None = None
    date_after: str | None = None
    date_before: str | None = None
    status: str | None = None
    author: str | None = None
    topic: str | None = None
    text: str | None = None

    @classmethod
    def from_dict(cls, data: "dict | QueryFilter | None") -> "QueryFilter":
        if data is None:
            return cls()
        if isinstance(data, QueryFilter):
            return data
        if not isinstance(data, Mapping):
            raise InvalidFilterCombination(f"Filter must be a mapping, got {type(data).__name__}")
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = FILTER_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise InvalidFilterCombination(f"Unknown filter: {key}")
            if value is None or value == "":
                continue
            if not isinstance(value, str) and not (name == "kind" and isinstance(value, DocumentKind)):
                raise InvalidFilterCombination(
                    f"Filter {key} must be a string, got {type(value).__name__}"
                )
            values[name] = value
        if "kind" in values:
            try:
                values["kind"] = DocumentKind.parse(values["kind"])
            except ValueError as e:
                raise InvalidFilterCombination(str(e)) from e
        return cls(**values)

    def normalized(self) -> "QueryFilter":
        """Validate dates and normalize status/author into their index form."""
        for name in ("date", "date_after", "date_before"):
            value = getattr(self, name)
            if value is not None and normalize_date(value) != str(value):
                raise InvalidFilterCombination(
                    f"Invalid {name} '{value}', expected YYYY-MM-DD"
                )
        if self.date_after and self.date_before and self.date_after >= self.date_before:
            raise InvalidFilterCombination(
                f"date_after ({self.date_after}) must be earlier than date_before ({self.date_before})"
            )
        return QueryFilter(
            id=self.id,
            kind=self.kind,
            date=self.date,
            date_after=self.date_after,
            date_before=self.date_before,
            status=self.status.strip().lower() if self.status else None,
            author=normalize_author(self.author) if self.author else None,
            topic=self.topic.strip().lower() if self.topic else None,
            text=self.text.strip() if self.text else None,
        )

    def matches(self, doc: Document) -> bool:
        """Evaluate every predicate except ``text`` against a document."""
        if self.id is not None and doc.id != self.id:
            return False
        if self.kind is not None and doc.kind != self.kind:
            return False
        if self.date is not None and doc.date != self.date:
            return False
        if self.date_after is not None and (doc.date is None or doc.date <= self.date_after):
            return False
        if self.date_before is not None and (doc.date is None or doc.date >= self.date_before):
            return False
        if self.status is not None and doc.status != self.status:
            return False
        if self.author is not None and doc.author != self.author:
            return False
        if self.topic is not None and not any(self.topic in t.lower() for t in doc.topics):
            return False
        return True


@dataclass(frozen=True)
class RetrievalMode:
    """How much of each matching document a query returns."""

    name: str = "metadata"  # metadata, section, full
    section: str | None = None
    occurrence: int = 0

    @classmethod
    def parse(cls, value: "str | dict | RetrievalMode | None") -> "RetrievalMode":
        if value is None:
            return cls()
        if isinstance(value, RetrievalMode):
            return value
        if isinstance(value, str):
            if value in ("metadata", "full"):
                return cls(name=value)
            raise InvalidFilterCombination(
                f"Invalid mode '{value}'. Use 'metadata', 'full' or {{'section': name}}"
            )
        if isinstance(value, Mapping) and value.get("section"):
            if not isinstance(value["section"], str):
                raise InvalidFilterCombination(f"Section name must be a string: {value['section']!r}")
            occurrence = value.get("occurrence", 0)
            if isinstance(occurrence, bool) or not isinstance(occurrence, int) or occurrence < 0:
                raise InvalidFilterCombination(f"Section occurrence must be an integer >= 0: {occurrence!r}")
            return cls(name="section", section=str(value["section"]), occurrence=occurrence)
        raise InvalidFilterCombination(f"Invalid mode: {value!r}")

    @property
    def needs_sections(self) -> bool:
        return self.name != "metadata"


@dataclass(frozen=True)
class Pagination:
    limit: int | None = None
    offset: int = 0

    @classmethod
    def parse(cls, value: "dict | Pagination | None") -> "Pagination":
        if value is None:
            return cls()
        if isinstance(value, Pagination):
            return value
        if not isinstance(value, Mapping):
            raise InvalidFilterCombination(f"Invalid pagination: {value!r}")
        limit = value.get("limit")
        offset = value.get("offset") or 0
        try:
            return cls(limit=int(limit) if limit is not None else None, offset=int(offset))
        except (TypeError, ValueError) as e:
            raise InvalidFilterCombination(f"Invalid pagination: {value!r}") from e

    def resolved(self, default_limit: int) -> "Pagination":
        limit = self.limit if self.limit is not None else default_limit
        if limit < 1:
            raise InvalidFilterCombination(f"limit must be >= 1, got {limit}")
        if self.offset < 0:
            raise InvalidFilterCombination(f"offset must be >= 0, got {self.offset}")
        return Pagination(limit=limit, offset=self.offset)


@dataclass
class QueryResult:
    """Typed outcome of a query. ``error`` is set instead of raising."""

    items: list[dict] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    stale: list[str] = field(default_factory=list)
    error: dict | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "items": self.items,
            "totalCount": self.total_count,
            "hasMore": self.has_more,
        }
        if self.stale:
            data["stale"] = self.stale
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RebuildReport:
    """Outcome of a full rebuild: how many documents made it, and which files did not."""

    indexed: int = 0
    errors: list[ParseError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "indexed": self.indexed,
            "skipped": len(self.errors),
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ArchiveCriteria:
    """Which documents to move out of the active index. At least one bound is required."""

    kind: DocumentKind | None = None
    older_than_days: int | None = None
    before: str | None = None
    statuses: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return self.older_than_days is None and self.before is None and not self.statuses
