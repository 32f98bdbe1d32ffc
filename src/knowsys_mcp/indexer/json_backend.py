"""Flat-file JSON index, linear-scanned per query."""

import json
import logging

from knowsys_mcp.errors import IndexCorrupted, IndexNotInitialized
from knowsys_mcp.indexer.models import Document, QueryFilter
from knowsys_mcp.indexer.storage import StorageAdapter
from knowsys_mcp.indexer.walker import atomic_write_text

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


def serialize_index(documents: list[Document]) -> str:
    """Deterministic file content: entries sorted by (kind, id), keys sorted."""
    ordered = sorted(documents, key=lambda d: (d.kind.value, d.id))
    payload = {"version": INDEX_VERSION, "documents": [d.to_dict() for d in ordered]}
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


class JsonStorage(StorageAdapter):
    """
    Stores every entry in a single JSON file.

    The file is read in full on each call and never cached, so concurrent
    readers in the same process share nothing. Every write replaces the file
    atomically.
    """

    name = "json"
    supports_full_text = False

    def is_initialized(self) -> bool:
        return self.index_path.is_file()

    def _load(self) -> list[Document]:
        """
        Read every entry from disk.

        Raises:
            IndexNotInitialized: if the index file does not exist
            IndexCorrupted: if it is not a readable index of the current version
        """
        try:
            text = self.index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise IndexNotInitialized(self.index_path) from None
        except UnicodeDecodeError as e:
            raise IndexCorrupted(self.index_path, f"invalid encoding: {e}") from e

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise IndexCorrupted(self.index_path, f"invalid JSON at line {e.lineno}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("documents"), list):
            raise IndexCorrupted(self.index_path, "missing document list")
        if payload.get("version") != INDEX_VERSION:
            raise IndexCorrupted(self.index_path, f"unsupported version {payload.get('version')!r}")

        try:
            return [Document.from_dict(entry) for entry in payload["documents"]]
        except (KeyError, TypeError, ValueError) as e:
            raise IndexCorrupted(self.index_path, f"malformed entry: {e}") from e

    def _save(self, documents: list[Document]) -> None:
        atomic_write_text(self.index_path, serialize_index(documents))

    def _select(self, flt: QueryFilter) -> list[Document]:
        return [doc for doc in self._load() if flt.matches(doc)]

    def _write_entry(self, document: Document) -> None:
        key = (document.kind, document.id)
        documents = [d for d in self._load() if (d.kind, d.id) != key]
        documents.append(document)
        self._save(documents)

    def _delete_entries(self, documents: list[Document]) -> None:
        keys = {(d.kind, d.id) for d in documents}
        self._save([d for d in self._load() if (d.kind, d.id) not in keys])

    def _replace_all(self, documents: list[Document]) -> None:
        self._save(documents)
        logger.debug("Wrote %d entries to %s", len(documents), self.index_path)

    def dump(self) -> str:
        """The index file exactly as stored."""
        try:
            return self.index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise IndexNotInitialized(self.index_path) from None
