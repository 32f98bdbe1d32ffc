"""MCP read tools for knowsys-mcp.

This module defines the read-only tools exposed by the MCP server:
- query_documents: Filtered, paged query in metadata, section or full mode
- get_section: One named section of one document
- document_exists: Cheapest possible existence check
- sync_plans: Regenerate the team plan index from pointer files
"""

from fastmcp import FastMCP

from knowsys_mcp.indexer.query import QueryEngine
from knowsys_mcp.sync import PlanSync


def _mode(mode: str, section: str | None, occurrence: int) -> str | dict:
    if section:
        return {"section": section, "occurrence": occurrence}
    return mode


def register_tools(
    mcp: FastMCP,
    engine: QueryEngine,
    plan_sync: PlanSync,
    read_only: bool = False,
) -> None:
    """Register all read tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        engine: Query engine over the configured backend
        plan_sync: Plan synchronization over the pointer directory
        read_only: Compute the team index without writing CURRENT_PLAN.md
    """

    @mcp.tool()
    def query_documents(
        kind: str | None = None,
        date: str | None = None,
        date_after: str | None = None,
        date_before: str | None = None,
        status: str | None = None,
        author: str | None = None,
        topic: str | None = None,
        text: str | None = None,
        mode: str = "metadata",
        section: str | None = None,
        occurrence: int = 0,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict:
        """Query sessions, plans and learned patterns.

        All filters are combined with AND. Results are ordered newest first,
        or by relevance when ``text`` is given.

        Args:
            kind: session, plan or pattern
            date: Exact date (YYYY-MM-DD)
            date_after: Only documents dated after this day (YYYY-MM-DD)
            date_before: Only documents dated before this day (YYYY-MM-DD)
            status: Plan status (planned, active, paused, complete, cancelled)
            author: Author name (normalized, e.g. "Alice Smith" -> "alice-smith")
            topic: Case-insensitive substring of any topic
            text: Full-text search (relational backend only)
            mode: "metadata" (no bodies) or "full"
            section: Return only this section of each document instead
            occurrence: Which of several same-named sections (0 = first)
            limit: Page size (server default when omitted)
            offset: Number of results to skip

        Returns:
            Dict with:
            - items: Matching documents shaped by the mode
            - totalCount: Number of matches across all pages
            - hasMore: Whether another page exists
            - stale: Ids excluded because their source changed (if any)
            - error: {code, message} when the query could not run
        """
        flt = {
            "kind": kind,
            "date": date,
            "date_after": date_after,
            "date_before": date_before,
            "status": status,
            "author": author,
            "topic": topic,
            "text": text,
        }
        result = engine.query(
            flt,
            _mode(mode, section, occurrence),
            {"limit": limit, "offset": offset},
        )
        return result.to_dict()

    @mcp.tool()
    def get_section(
        doc_id: str,
        section: str,
        kind: str | None = None,
        occurrence: int = 0,
    ) -> dict:
        """Read one section of a document.

        The section runs from its heading to the next heading of the same or a
        higher level, so nested subsections are included.

        Args:
            doc_id: Document id (usually the filename without .md)
            section: Heading text, case-insensitive (e.g. "Day 3")
            kind: session, plan or pattern, if the id is ambiguous
            occurrence: Which of several same-named sections (0 = first)

        Returns:
            Dict with items (at most one), totalCount, hasMore, and error on failure
        """
        return engine.get_section(doc_id, section, kind=kind, occurrence=occurrence).to_dict()

    @mcp.tool()
    def document_exists(doc_id: str, kind: str | None = None) -> dict:
        """Check whether a document is indexed, returning only its metadata.

        Args:
            doc_id: Document id
            kind: session, plan or pattern

        Returns:
            Dict with exists, and the metadata item when it does
        """
        result = engine.exists(doc_id, kind=kind)
        if not result.ok:
            return {"exists": False, "error": result.error}
        return {
            "exists": result.total_count > 0,
            "metadata": result.items[0] if result.items else None,
        }

    @mcp.tool()
    def sync_plans() -> dict:
        """Regenerate CURRENT_PLAN.md from every writer's pointer file.

        In read-only mode the rows are computed but the file is not written.

        Returns:
            Dict with:
            - rows: One per writer, sorted by author (planId null when idle)
            - warnings: Pointer files that were skipped and why
            - empty / marker: Set when no writer has a pointer file
        """
        return plan_sync.sync(write=not read_only).to_dict()
