"""One-way migration from the JSON index to the relational index."""

import logging
from dataclasses import dataclass, field

from knowsys_mcp.errors import IndexCorrupted, IndexNotInitialized, ParseError
from knowsys_mcp.indexer.database import SqliteStorage
from knowsys_mcp.indexer.indexer import build_documents, check_unique_ids, load_document
from knowsys_mcp.indexer.json_backend import JsonStorage
from knowsys_mcp.indexer.models import QueryFilter

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    migrated: int = 0
    rederived: list[str] = field(default_factory=list)  # Ids re-read from source
    dropped: list[str] = field(default_factory=list)  # Ids whose source is gone or broken
    from_source: bool = False  # The JSON index was unusable; everything came from source

    def to_dict(self) -> dict:
        return {
            "migrated": self.migrated,
            "rederived": self.rederived,
            "dropped": self.dropped,
            "from_source": self.from_source,
        }


def migrate_to_relational(
    source: JsonStorage,
    target: SqliteStorage,
    force: bool = False,
) -> MigrationReport:
    """
    Copy the trusted JSON entries into the relational index.

    Entries whose source changed since indexing are re-read from disk; entries
    whose source vanished or no longer parses are dropped. A missing or corrupted
    JSON index falls back to a full build from source.

    Raises:
        ValueError: if the relational index already exists and ``force`` is False
        DuplicateDocumentId: if the sources hold colliding ids
    """
    if target.is_initialized() and not force:
        raise ValueError(
            f"Relational index already exists at {target.index_path}; pass force=True to overwrite it"
        )

    report = MigrationReport()
    try:
        entries = source._select(QueryFilter())
    except (IndexNotInitialized, IndexCorrupted) as e:
        logger.warning("JSON index unusable (%s); migrating from source files", e.message)
        build = build_documents(source.root)
        documents = build.documents
        report.from_source = True
    else:
        documents, _ = source.trusted(entries)
        fresh = {(d.kind, d.id) for d in documents}
        for entry in entries:
            if (entry.kind, entry.id) in fresh:
                continue
            try:
                documents.append(load_document(source.root, entry.source_path))
                report.rederived.append(entry.id)
            except (FileNotFoundError, ParseError) as e:
                logger.warning("Dropping %s during migration: %s", entry.id, e)
                report.dropped.append(entry.id)
        check_unique_ids(documents)

    target._replace_all(documents)
    report.migrated = len(documents)
    logger.info(
        "Migrated %d documents from %s to %s", report.migrated, source.index_path, target.index_path
    )
    return report

