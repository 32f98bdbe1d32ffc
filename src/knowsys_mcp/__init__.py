"""
knowsys-mcp - queryable index over session, plan and pattern documents.

Keeps a derived index over a directory of markdown documents so that agents with
a tight response budget can fetch exactly the slice they need: an existence check,
metadata only, a single section, or the full body.

Stack:
- Python + FastMCP (tool adapter)
- JSON index or SQLite FTS5 (derived, rebuildable)
- Markdown with YAML header (source of truth)
"""

__version__ = "0.1.0"
