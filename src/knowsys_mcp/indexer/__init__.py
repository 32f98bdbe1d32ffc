"""
Indexer module for knowsys-mcp.

Parses session, plan and pattern documents and keeps a derived index over them,
either as a single JSON file or as SQLite with FTS5. Source files are always
authoritative; any index can be thrown away and rebuilt.
"""

from knowsys_mcp.indexer.database import SqliteStorage
from knowsys_mcp.indexer.indexer import build_documents
from knowsys_mcp.indexer.json_backend import JsonStorage
from knowsys_mcp.indexer.migration import migrate_to_relational
from knowsys_mcp.indexer.models import (
    ArchiveCriteria,
    Document,
    DocumentKind,
    Pagination,
    PlanStatus,
    QueryFilter,
    QueryResult,
    RebuildReport,
    RetrievalMode,
    Section,
)
from knowsys_mcp.indexer.parser import parse, parse_document
from knowsys_mcp.indexer.query import QueryEngine, open_storage
from knowsys_mcp.indexer.sections import SectionOp, extract_section, split_sections
from knowsys_mcp.indexer.storage import StorageAdapter
from knowsys_mcp.indexer.walker import SourceFile, walk_workspace

__all__ = [
    "ArchiveCriteria",
    "Document",
    "DocumentKind",
    "JsonStorage",
    "Pagination",
    "PlanStatus",
    "QueryEngine",
    "QueryFilter",
    "QueryResult",
    "RebuildReport",
    "RetrievalMode",
    "Section",
    "SectionOp",
    "SourceFile",
    "SqliteStorage",
    "StorageAdapter",
    "build_documents",
    "extract_section",
    "migrate_to_relational",
    "open_storage",
    "parse",
    "parse_document",
    "split_sections",
    "walk_workspace",
]
