"""Backend-agnostic storage contract and the query pipeline shared by every backend.

A backend only knows how to select, write and replace index entries. Filtering
semantics, ordering, staleness checks, pagination and retrieval modes live here
so that the JSON and relational backends cannot drift apart.
"""

import json
import logging
import shutil
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from pathlib import Path

from knowsys_mcp.errors import (
    DocumentNotFound,
    DuplicateDocumentId,
    IndexNotInitialized,
    InvalidFilterCombination,
    InvalidStatusTransition,
    SectionNotFound,
)
from knowsys_mcp.indexer.indexer import build_documents, load_document
from knowsys_mcp.indexer.models import (
    PLAN_TRANSITIONS,
    ArchiveCriteria,
    Document,
    DocumentKind,
    Pagination,
    PlanStatus,
    QueryFilter,
    QueryResult,
    RebuildReport,
    RetrievalMode,
    normalize_date,
)
from knowsys_mcp.indexer.parser import (
    parse_document,
    render_document,
    replace_body,
    set_header_value,
    split_frontmatter,
)
from knowsys_mcp.indexer.sections import SectionOp, extract_section, mutate_body
from knowsys_mcp.indexer.walker import ARCHIVE_DIR, atomic_write_text, compute_hash

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20

# Allowed drift between a recorded mtime and the file's, in seconds
MTIME_TOLERANCE = 0.001


def order_documents(documents: list[Document]) -> list[Document]:
    """Date descending (undated last), then id ascending, then kind."""
    by_id = sorted(documents, key=lambda d: (d.id, d.kind.value))
    return sorted(by_id, key=lambda d: d.date or "", reverse=True)


def default_source_path(document: Document) -> str:
    return f"{document.kind.folder}/{document.id}.md"


def section_item(doc: Document, mode: RetrievalMode) -> dict:
    """The slice of a document returned in section mode."""
    assert mode.section is not None
    section, content = extract_section(doc.sections, mode.section, mode.occurrence, doc.id)
    return {
        "id": doc.id,
        "kind": doc.kind.value,
        "date": doc.date,
        "status": doc.status,
        "author": doc.author,
        "title": doc.title,
        "source_path": doc.source_path,
        "section": {"heading": section.heading, "level": section.level},
        "content": content,
    }


def project_document(doc: Document, mode: RetrievalMode) -> dict:
    if mode.name == "section":
        return section_item(doc, mode)
    if mode.name == "full":
        item = doc.to_dict()
        item["content"] = doc.body
        return item
    return doc.metadata_dict()


class StorageAdapter(ABC):
    """
    Contract every index backend fulfils.

    Source files under ``root`` are authoritative; the index at ``index_path``
    is a derived projection that ``rebuild()`` can always recreate. Backend
    selection is made once, at construction.
    """

    name = "abstract"
    supports_full_text = False

    def __init__(self, root: Path, index_path: Path, verify_sources: bool = True):
        self.root = root
        self.index_path = index_path
        self.verify_sources = verify_sources

    # Backend primitives

    @abstractmethod
    def is_initialized(self) -> bool:
        """Whether a build has completed and left a readable index behind."""

    @abstractmethod
    def _select(self, flt: QueryFilter) -> list[Document]:
        """
        All entries matching every predicate of ``flt`` except ``text``.

        Raises:
            IndexNotInitialized: if no index exists yet
            IndexCorrupted: if the index cannot be read
        """

    def _search(self, flt: QueryFilter) -> list[tuple[Document, float]]:
        """Entries matching ``flt`` including ``text``, with a relevance score."""
        raise InvalidFilterCombination(
            f"The {self.name} backend has no full-text search; "
            "drop the text filter or migrate to the relational backend"
        )

    @abstractmethod
    def _write_entry(self, document: Document) -> None:
        """Insert or replace one entry keyed by (kind, id)."""

    @abstractmethod
    def _delete_entries(self, documents: list[Document]) -> None:
        """Remove entries keyed by (kind, id)."""

    @abstractmethod
    def _replace_all(self, documents: list[Document]) -> None:
        """Atomically swap the whole index for ``documents``."""

    def close(self) -> None:
        """Release backend resources."""

    # Shared operations

    def _require_initialized(self) -> None:
        if not self.is_initialized():
            raise IndexNotInitialized(self.index_path)

    def dump(self) -> str:
        """Canonical serialization of every entry, for comparing index states."""
        documents = sorted(self._select(QueryFilter()), key=lambda d: (d.kind.value, d.id))
        return json.dumps([d.to_dict() for d in documents], indent=2, sort_keys=True, ensure_ascii=False)

    def trusted(self, documents: list[Document]) -> tuple[list[Document], list[str]]:
        """
        Split entries into those matching their source and those that are stale.

        mtime is the fast path; a changed mtime only marks an entry stale when
        the content hash differs too.
        """
        if not self.verify_sources:
            return documents, []

        fresh: list[Document] = []
        stale: list[str] = []
        for doc in documents:
            path = self.root / doc.source_path
            try:
                mtime = path.stat().st_mtime
                if abs(mtime - doc.mtime) > MTIME_TOLERANCE and compute_hash(path.read_bytes()) != doc.checksum:
                    logger.debug("Stale entry %s: %s changed since indexing", doc.id, doc.source_path)
                    stale.append(doc.id)
                    continue
            except FileNotFoundError:
                logger.debug("Stale entry %s: %s no longer exists", doc.id, doc.source_path)
                stale.append(doc.id)
                continue
            fresh.append(doc)
        return fresh, stale

    def query(
        self,
        filter: "dict | QueryFilter | None" = None,
        mode: "str | dict | RetrievalMode | None" = None,
        pagination: "dict | Pagination | None" = None,
        default_limit: int = DEFAULT_LIMIT,
    ) -> QueryResult:
        """
        Run a query and shape each hit according to the retrieval mode.

        In section mode, documents without the requested heading do not count as
        matches; if none of the matching documents has it the query fails.

        Raises:
            IndexNotInitialized: before the first successful build
            IndexCorrupted: if the index cannot be read
            InvalidFilterCombination: for bad filters, modes or pagination
            SectionNotFound: if no matching document has the requested section
        """
        flt = QueryFilter.from_dict(filter).normalized()
        retrieval = RetrievalMode.parse(mode)
        page = Pagination.parse(pagination).resolved(default_limit)

        scores: dict[tuple[str, str], float] = {}
        if flt.text:
            ranked = self._search(flt)
            documents = [doc for doc, _ in ranked]
            scores = {(doc.kind.value, doc.id): score for doc, score in ranked}
        else:
            documents = order_documents(self._select(flt))

        documents, stale = self.trusted(documents)

        if retrieval.name == "section":
            items: list[dict] = []
            for doc in documents:
                try:
                    items.append(section_item(doc, retrieval))
                except SectionNotFound:
                    continue
            if documents and not items:
                raise SectionNotFound(
                    retrieval.section or "",
                    documents[0].id if len(documents) == 1 else None,
                )
        else:
            items = [project_document(doc, retrieval) for doc in documents]

        if scores:
            for item in items:
                item["score"] = scores[(item["kind"], item["id"])]

        total = len(items)
        assert page.limit is not None
        window = items[page.offset : page.offset + page.limit]
        return QueryResult(
            items=window,
            total_count=total,
            has_more=page.offset + len(window) < total,
            stale=stale,
        )

    def get(self, doc_id: str, kind: "DocumentKind | str | None" = None) -> Document:
        """
        Look up one entry by id.

        Raises:
            DocumentNotFound: if no entry has that id
            InvalidFilterCombination: if the id exists under several kinds and
                no kind was given
        """
        self._require_initialized()
        flt = QueryFilter(id=doc_id, kind=DocumentKind.parse(kind) if kind else None)
        matches = self._select(flt)
        if not matches:
            raise DocumentNotFound(doc_id)
        if len(matches) > 1:
            kinds = ", ".join(sorted(d.kind.value for d in matches))
            raise InvalidFilterCombination(f"Id '{doc_id}' exists as {kinds}; pass a kind")
        return matches[0]

    def _reindex(self, relative_path: str) -> Document:
        document = load_document(self.root, relative_path)
        self._write_entry(document)
        return document

    def upsert(self, document: Document) -> Document:
        """
        Write a document to its source file and index it, replacing any entry
        with the same (kind, id).

        A new document goes to ``<folder>/<id>.md`` unless it names a source path.

        Returns:
            The document as re-read from the written source

        Raises:
            DuplicateDocumentId: if the target path holds another, unindexed source
            ParseError: if the rendered source would not parse, e.g. an unknown plan
                status or a session without a date; the source is left untouched
        """
        self._require_initialized()
        existing = self._select(QueryFilter(id=document.id, kind=document.kind))
        if existing:
            relative = existing[0].source_path
        else:
            relative = document.source_path or default_source_path(document)
            if (self.root / relative).exists():
                raise DuplicateDocumentId(document.kind.value, document.id, [relative])

        content = render_document(document)
        # Nothing is written unless the rendered source parses back
        parse_document(content, relative)
        atomic_write_text(self.root / relative, content)
        stored = self._reindex(relative)
        logger.info("Upserted %s %s (%s)", stored.kind.value, stored.id, relative)
        return stored

    def mutate_section(
        self,
        doc_id: str,
        section: str,
        op: "SectionOp | str",
        content: str,
        kind: "DocumentKind | str | None" = None,
        occurrence: int = 0,
    ) -> Document:
        """
        Edit a document's source relative to a named section and re-index it.

        Raises:
            DocumentNotFound: if no entry has that id
            SectionNotFound: if insert_before/insert_after targets a missing section
            ValueError: for an unknown operation or empty content
        """
        doc = self.get(doc_id, kind)
        operation = SectionOp.parse(op)
        path = self.root / doc.source_path
        text = path.read_text(encoding="utf-8")
        body = split_frontmatter(text.replace("\r\n", "\n"), doc.source_path).body

        try:
            new_body = mutate_body(body, section, operation, content, occurrence)
        except SectionNotFound:
            raise SectionNotFound(section, doc.id) from None

        atomic_write_text(path, replace_body(text, new_body))
        stored = self._reindex(doc.source_path)
        logger.info("%s section '%s' of %s", operation.value, section, doc.id)
        return stored

    def update_status(self, doc_id: str, status: "PlanStatus | str") -> Document:
        """
        Move a plan to a new status, following the allowed transitions.

        Setting the current status again is a no-op.

        Raises:
            DocumentNotFound: if no plan has that id
            InvalidStatusTransition: if the move is not allowed
            ValueError: for an unknown status
        """
        doc = self.get(doc_id, DocumentKind.PLAN)
        target = PlanStatus.parse(status)
        current = PlanStatus.parse(doc.status or PlanStatus.PLANNED.value)
        if current is target:
            return doc
        if not current.can_transition_to(target):
            if current.is_terminal:
                reason = f"{current.label} is a terminal status"
            else:
                allowed = ", ".join(sorted(s.value for s in PLAN_TRANSITIONS[current]))
                reason = f"allowed from {current.value}: {allowed}"
            raise InvalidStatusTransition(
                f"Cannot move plan {doc.id} from {current.value} to {target.value} ({reason})"
            )

        path = self.root / doc.source_path
        text = path.read_text(encoding="utf-8")
        atomic_write_text(path, set_header_value(text, "status", target.value))
        stored = self._reindex(doc.source_path)
        logger.info("Plan %s: %s -> %s", doc.id, current.value, target.value)
        return stored

    def archive(self, criteria: ArchiveCriteria, today: date | None = None) -> int:
        """
        Move matching sources under ``archive/`` and drop their entries.

        Age is measured on the document date, or on the source's mtime for
        undated documents. Sources land in ``archive/<folder>/<YYYY>/<MM>/``.

        Returns:
            Number of documents archived

        Raises:
            InvalidFilterCombination: if the criteria bound nothing, or hold a
                negative age or a malformed date
        """
        if criteria.is_empty():
            raise InvalidFilterCombination(
                "Archive criteria need at least one of older_than_days, before or statuses"
            )
        days = criteria.older_than_days
        if days is not None and (isinstance(days, bool) or not isinstance(days, int) or days < 0):
            raise InvalidFilterCombination(f"Invalid older_than_days {days!r}, expected an integer >= 0")
        if criteria.before is not None and normalize_date(criteria.before) != str(criteria.before):
            raise InvalidFilterCombination(f"Invalid before '{criteria.before}', expected YYYY-MM-DD")
        self._require_initialized()
        today = today or date.today()

        bounds: list[str] = []
        if criteria.older_than_days is not None:
            bounds.append((today - timedelta(days=criteria.older_than_days)).isoformat())
        if criteria.before is not None:
            bounds.append(criteria.before)
        cutoff = min(bounds) if bounds else None
        statuses = {s.strip().lower() for s in criteria.statuses}

        archived: list[Document] = []
        for doc in self._select(QueryFilter(kind=criteria.kind)):
            source = self.root / doc.source_path
            doc_date = doc.date
            if doc_date is None and source.exists():
                doc_date = datetime.fromtimestamp(source.stat().st_mtime).date().isoformat()
            if cutoff is not None and (doc_date is None or doc_date >= cutoff):
                continue
            if statuses and doc.status not in statuses:
                continue

            archive_date = doc_date or today.isoformat()
            target = (
                self.root / ARCHIVE_DIR / doc.kind.folder / archive_date[:4] / archive_date[5:7] / source.name
            )
            if target.exists():
                logger.warning("Not archiving %s: %s already exists", doc.id, target)
                continue
            if source.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(source), str(target))
            archived.append(doc)

        if archived:
            self._delete_entries(archived)
        logger.info("Archived %d documents", len(archived))
        return len(archived)

    def rebuild(self) -> RebuildReport:
        """
        Re-derive the whole index from the source files.

        Re-running on unchanged sources leaves an identical index.

        Raises:
            DuplicateDocumentId: if two sources share a (kind, id); the previous
                index is left in place
        """
        build = build_documents(self.root)
        self._replace_all(build.documents)
        logger.info("Rebuilt %s index at %s", self.name, self.index_path)
        return build.report
