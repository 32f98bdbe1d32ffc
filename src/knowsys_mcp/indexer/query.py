"""Query engine: the typed-result boundary in front of a storage backend."""

import logging

from knowsys_mcp.config import Config
from knowsys_mcp.errors import DocumentNotFound, KnowsysError
from knowsys_mcp.indexer.database import SqliteStorage
from knowsys_mcp.indexer.json_backend import JsonStorage
from knowsys_mcp.indexer.models import Pagination, QueryFilter, QueryResult, RebuildReport, RetrievalMode
from knowsys_mcp.indexer.storage import DEFAULT_LIMIT, StorageAdapter

logger = logging.getLogger(__name__)

BACKENDS: dict[str, type[StorageAdapter]] = {
    JsonStorage.name: JsonStorage,
    SqliteStorage.name: SqliteStorage,
}


def open_storage(config: Config) -> StorageAdapter:
    """Construct the backend named in the config."""
    try:
        backend = BACKENDS[config.backend]
    except KeyError:
        valid = ", ".join(sorted(BACKENDS))
        raise ValueError(f"Unknown backend '{config.backend}'. Must be one of: {valid}") from None
    return backend(config.root, config.index_path, verify_sources=config.verify_sources)


class QueryEngine:
    """
    Entry point for reading the index.

    Every error from the layers below comes back inside the ``QueryResult``
    instead of being raised, so a caller can always tell "no matches" (an empty
    result) apart from "the index is unusable" (a result with ``error`` set).
    """

    def __init__(self, storage: StorageAdapter, default_limit: int = DEFAULT_LIMIT):
        if default_limit < 1:
            raise ValueError(f"default_limit must be positive, got {default_limit}")
        self.storage = storage
        self.default_limit = default_limit

    @classmethod
    def from_config(cls, config: Config) -> "QueryEngine":
        return cls(open_storage(config), default_limit=config.default_limit)

    def close(self) -> None:
        self.storage.close()

    def query(
        self,
        filter: "dict | QueryFilter | None" = None,
        mode: "str | dict | RetrievalMode | None" = "metadata",
        pagination: "dict | Pagination | None" = None,
    ) -> QueryResult:
        """
        Filter, order and page the index.

        Args:
            filter: Predicates, ANDed (date, dateAfter, dateBefore, status,
                author, topic, text, id, kind)
            mode: "metadata", "full" or {"section": name, "occurrence": n}
            pagination: {"limit": n, "offset": n}; limit defaults to
                ``default_limit``

        Returns:
            A QueryResult; on failure ``error`` holds ``{"code", "message"}``
        """
        try:
            return self.storage.query(filter, mode, pagination, default_limit=self.default_limit)
        except KnowsysError as e:
            logger.info("Query failed (%s): %s", e.code, e.message)
            return QueryResult(error=e.to_dict())

    def get_section(
        self,
        doc_id: str,
        section: str,
        kind: str | None = None,
        occurrence: int = 0,
    ) -> QueryResult:
        """One section of one document."""
        flt: dict = {"id": doc_id}
        if kind:
            flt["kind"] = kind
        result = self.query(flt, {"section": section, "occurrence": occurrence}, {"limit": 1})
        if result.ok and result.total_count == 0 and not result.stale:
            # A missing id should not look like an empty match list
            return QueryResult(error=DocumentNotFound(doc_id).to_dict())
        return result

    def exists(self, doc_id: str, kind: str | None = None) -> QueryResult:
        """Existence check: metadata of at most one match, nothing else."""
        flt: dict = {"id": doc_id}
        if kind:
            flt["kind"] = kind
        return self.query(flt, "metadata", {"limit": 1})

    def rebuild(self) -> RebuildReport:
        """
        Re-derive the index from source.

        Raises:
            DuplicateDocumentId: if two sources collide; the old index stays
        """
        return self.storage.rebuild()
