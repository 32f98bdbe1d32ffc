"""Write tools for knowsys-mcp - edit, archive and rebuild the document index."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from knowsys_mcp.config import BACKEND_INDEX_FILES, Config
from knowsys_mcp.errors import ReadOnlyError
from knowsys_mcp.indexer.database import SqliteStorage
from knowsys_mcp.indexer.json_backend import JsonStorage
from knowsys_mcp.indexer.migration import migrate_to_relational
from knowsys_mcp.indexer.models import ArchiveCriteria, Document, DocumentKind
from knowsys_mcp.indexer.query import QueryEngine
from knowsys_mcp.sync import PlanSync

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)


def check_write_permission(config: Config) -> None:
    """
    Refuse writes in read-only mode.

    Raises:
        ReadOnlyError: if the server runs read-only
    """
    if config.read_only:
        raise ReadOnlyError("Server is in read-only mode; write operations are disabled")


def _summary(doc: Document) -> dict:
    return {
        "id": doc.id,
        "kind": doc.kind.value,
        "document_status": doc.status,
        "path": doc.source_path,
        "headings": doc.headings(),
    }


def register_tools_write(
    mcp: "FastMCP",
    config: Config,
    engine: QueryEngine,
    plan_sync: PlanSync,
) -> None:
    """Register all write tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        config: Config instance for paths and read-only mode
        engine: Query engine whose storage receives the writes
        plan_sync: Plan synchronization, for writers updating their pointer file
    """
    storage = engine.storage

    @mcp.tool()
    def mutate_section(
        doc_id: str,
        section: str,
        operation: str,
        content: str,
        kind: str | None = None,
        occurrence: int = 0,
    ) -> dict:
        """Write content into a document relative to one of its sections.

        Args:
            doc_id: Document id
            section: Heading text (e.g. "Day 3" or "## Day 3" to set the level
                of a newly created section)
            operation: append, prepend, insert_before or insert_after.
                append/prepend create a missing section; insert_before and
                insert_after need it to exist.
            content: Markdown to insert
            kind: session, plan or pattern, if the id is ambiguous
            occurrence: Which of several same-named sections (0 = first)

        Returns:
            Dict with status and the document's id, path and headings
        """
        check_write_permission(config)
        doc = storage.mutate_section(doc_id, section, operation, content, kind=kind, occurrence=occurrence)
        result = _summary(doc)
        result["status"] = "updated"
        result["operation"] = operation
        return result

    @mcp.tool()
    def update_plan_status(plan_id: str, new_status: str) -> dict:
        """Move a plan to a new status.

        Allowed: planned -> active -> paused/complete/cancelled, paused -> active.
        complete and cancelled are final.

        Args:
            plan_id: Plan id (e.g. "PLAN_auth")
            new_status: planned, active, paused, complete or cancelled

        Returns:
            Dict with status, the plan's id and its new status
        """
        check_write_permission(config)
        doc = storage.update_status(plan_id, new_status)
        return {"status": "updated", "id": doc.id, "plan_status": doc.status, "path": doc.source_path}

    @mcp.tool()
    def archive_documents(
        kind: str | None = None,
        older_than_days: int | None = None,
        before: str | None = None,
        statuses: list[str] | None = None,
    ) -> dict:
        """Move old documents to archive/ and out of the index.

        Args:
            kind: session, plan or pattern (all kinds when omitted)
            older_than_days: Archive documents dated more than this many days
                ago (server default when no other criterion is given)
            before: Archive documents dated before this day (YYYY-MM-DD)
            statuses: Only archive documents in one of these statuses
                (e.g. ["complete", "cancelled"])

        Returns:
            Dict with status and the number of archived documents
        """
        check_write_permission(config)
        if older_than_days is None and before is None and not statuses:
            older_than_days = config.archive_days
        criteria = ArchiveCriteria(
            kind=DocumentKind.parse(kind) if kind else None,
            older_than_days=older_than_days,
            before=before,
            statuses=tuple(statuses or ()),
        )
        count = storage.archive(criteria)
        return {"status": "archived", "count": count}

    @mcp.tool()
    def rebuild_index() -> dict:
        """Re-derive the whole index from the source documents.

        Use this after editing files by hand or when a query reports
        index_corrupted or index_not_initialized.

        Returns:
            Dict with indexed count, skipped count, and per-file parse errors
        """
        check_write_permission(config)
        report = engine.rebuild()
        logger.info("Rebuild via tool: %d indexed, %d skipped", report.indexed, len(report.errors))
        result = report.to_dict()
        result["status"] = "rebuilt"
        result["backend"] = storage.name
        return result

    @mcp.tool()
    def migrate_index(force: bool = False) -> dict:
        """Copy the JSON index into the relational (SQLite) index.

        One-way. Only available when the server runs the sqlite backend.

        Args:
            force: Overwrite an existing relational index

        Returns:
            Dict with migrated count and ids re-read from or dropped for their sources
        """
        check_write_permission(config)
        if not isinstance(storage, SqliteStorage):
            raise ValueError("migrate_index needs the sqlite backend (KNOWSYS_BACKEND=sqlite)")
        json_storage = JsonStorage(
            config.root,
            config.root / BACKEND_INDEX_FILES["json"],
            verify_sources=config.verify_sources,
        )
        result = migrate_to_relational(json_storage, storage, force=force).to_dict()
        result["status"] = "migrated"
        return result

    @mcp.tool()
    def set_active_plan(
        author: str,
        plan_id: str | None = None,
        status: str | None = None,
        note: str | None = None,
    ) -> dict:
        """Record what one writer is working on and refresh the team index.

        Only the writer's own pointer file (plans/active-<author>.md) is written.

        Args:
            author: The writer (normalized, e.g. "Alice Smith" -> "alice-smith")
            plan_id: Plan id, or omit when not working on a plan
            status: Plan status to show next to the plan
            note: Free-text note

        Returns:
            Dict with the pointer path and the regenerated team index rows
        """
        check_write_permission(config)
        path = plan_sync.write_pointer(author, plan_id=plan_id, status=status, note=note)
        result = plan_sync.sync().to_dict()
        result["status"] = "updated"
        result["pointer"] = path.relative_to(config.root).as_posix()
        return result
