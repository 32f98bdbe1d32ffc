"""SQLite index with indexed metadata columns and FTS5 over section bodies."""

import json
import logging
import os
import re
import sqlite3
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from knowsys_mcp.errors import IndexCorrupted, IndexNotInitialized, InvalidFilterCombination
from knowsys_mcp.indexer.models import Document, DocumentKind, QueryFilter, Section
from knowsys_mcp.indexer.storage import StorageAdapter

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

SCHEMA_SQL = """
-- knowsys index schema v1
-- This index is disposable: it regenerates from the source documents

PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS documents (
    pk          INTEGER PRIMARY KEY,
    id          TEXT NOT NULL,
    kind        TEXT NOT NULL,
    date        TEXT,
    status      TEXT,
    author      TEXT,
    title       TEXT,
    topics      TEXT NOT NULL,
    extra       TEXT NOT NULL,
    source_path TEXT NOT NULL UNIQUE,
    checksum    TEXT NOT NULL,
    mtime       REAL NOT NULL,
    UNIQUE (kind, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_id ON documents(id);
CREATE INDEX IF NOT EXISTS idx_documents_kind ON documents(kind);
CREATE INDEX IF NOT EXISTS idx_documents_date ON documents(date DESC);
CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status);
CREATE INDEX IF NOT EXISTS idx_documents_author ON documents(author);

-- One row per topic, lower-cased for containment filters
CREATE TABLE IF NOT EXISTS topics (
    document_pk INTEGER NOT NULL,
    topic_key   TEXT NOT NULL,
    FOREIGN KEY (document_pk) REFERENCES documents(pk) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_topics_document ON topics(document_pk);

CREATE TABLE IF NOT EXISTS sections (
    pk          INTEGER PRIMARY KEY,
    document_pk INTEGER NOT NULL,
    position    INTEGER NOT NULL,
    heading     TEXT NOT NULL,
    level       INTEGER NOT NULL,
    body        TEXT NOT NULL,
    FOREIGN KEY (document_pk) REFERENCES documents(pk) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sections_document_position ON sections(document_pk, position);

CREATE VIRTUAL TABLE IF NOT EXISTS sections_fts USING fts5(
    heading,
    body,
    content='sections',
    content_rowid='pk'
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS sections_ai AFTER INSERT ON sections BEGIN
    INSERT INTO sections_fts(rowid, heading, body)
    VALUES (NEW.pk, NEW.heading, NEW.body);
END;

CREATE TRIGGER IF NOT EXISTS sections_ad AFTER DELETE ON sections BEGIN
    INSERT INTO sections_fts(sections_fts, rowid, heading, body)
    VALUES ('delete', OLD.pk, OLD.heading, OLD.body);
END;

CREATE TRIGGER IF NOT EXISTS sections_au AFTER UPDATE ON sections BEGIN
    INSERT INTO sections_fts(sections_fts, rowid, heading, body)
    VALUES ('delete', OLD.pk, OLD.heading, OLD.body);
    INSERT INTO sections_fts(rowid, heading, body)
    VALUES (NEW.pk, NEW.heading, NEW.body);
END;

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

# bm25() weights for the (heading, body) columns
BM25_WEIGHTS = (2.0, 1.0)

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


def build_match_query(text: str) -> str:
    """
    Turn free text into an FTS5 query that matches documents containing every term.

    Each term is quoted, so FTS5 operators in user input are treated as words.

    Raises:
        InvalidFilterCombination: if the text has no searchable terms
    """
    terms = TOKEN_PATTERN.findall(text)
    if not terms:
        raise InvalidFilterCombination(f"Text filter '{text}' has no searchable terms")
    return " ".join('"%s"' % term.replace('"', '""') for term in terms)


class Database:
    """
    SQLite index file.

    Connections are opened per operation and closed afterwards, so nothing
    keeps a handle on a file that ``replace_all`` swaps out.
    """

    def __init__(self, db_path: Path):
        """Initialize database location."""
        self.db_path = db_path
        self._write_lock = threading.Lock()

    @staticmethod
    def _open(path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(str(path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        if not self.db_path.is_file():
            raise IndexNotInitialized(self.db_path)
        try:
            conn = self._open(self.db_path)
        except sqlite3.DatabaseError as e:
            raise IndexCorrupted(self.db_path, str(e)) from e
        cursor = conn.cursor()
        try:
            yield cursor
        except sqlite3.DatabaseError as e:
            raise IndexCorrupted(self.db_path, str(e)) from e
        finally:
            cursor.close()
            conn.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        if not self.db_path.is_file():
            raise IndexNotInitialized(self.db_path)
        with self._write_lock:
            try:
                conn = self._open(self.db_path)
            except sqlite3.DatabaseError as e:
                raise IndexCorrupted(self.db_path, str(e)) from e
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.DatabaseError as e:
                conn.rollback()
                raise IndexCorrupted(self.db_path, str(e)) from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
                conn.close()

    def is_initialized(self) -> bool:
        """Whether the file exists and holds a completed build of this schema."""
        if not self.db_path.is_file():
            return False
        try:
            with self._read_cursor() as cursor:
                cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
                row = cursor.fetchone()
        except IndexCorrupted:
            # Present but unreadable still counts as built; queries report the damage
            return True
        return row is not None

    def check_schema(self, cursor: sqlite3.Cursor) -> None:
        cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
        row = cursor.fetchone()
        if row is None or row["value"] != SCHEMA_VERSION:
            found = row["value"] if row else None
            raise IndexCorrupted(self.db_path, f"unsupported schema version {found!r}")

    def replace_all(self, documents: list[Document]) -> None:
        """
        Build a fresh database next to the target and rename it into place.

        Readers see either the previous file or the complete new one.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.db_path.parent, prefix=f".{self.db_path.name}.", suffix=".tmp"
        )
        os.close(fd)
        try:
            conn = self._open(Path(tmp_name))
            try:
                cursor = conn.cursor()
                cursor.executescript(SCHEMA_SQL)
                for doc in sorted(documents, key=lambda d: (d.kind.value, d.id)):
                    self._insert(cursor, doc)
                cursor.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
                    (SCHEMA_VERSION,),
                )
                conn.commit()
            finally:
                conn.close()
            with self._write_lock:
                os.replace(tmp_name, self.db_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # Document operations

    def _insert(self, cursor: sqlite3.Cursor, doc: Document) -> None:
        cursor.execute(
            """INSERT INTO documents
            (id, kind, date, status, author, title, topics, extra, source_path, checksum, mtime)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                doc.id,
                doc.kind.value,
                doc.date,
                doc.status,
                doc.author,
                doc.title,
                json.dumps(doc.topics, ensure_ascii=False),
                json.dumps(doc.extra, sort_keys=True, ensure_ascii=False),
                doc.source_path,
                doc.checksum,
                doc.mtime,
            ),
        )
        document_pk = cursor.lastrowid
        cursor.executemany(
            "INSERT INTO topics (document_pk, topic_key) VALUES (?, ?)",
            [(document_pk, topic.lower()) for topic in doc.topics],
        )
        cursor.executemany(
            """INSERT INTO sections (document_pk, position, heading, level, body)
            VALUES (?, ?, ?, ?, ?)""",
            [
                (document_pk, position, section.heading, section.level, section.body)
                for position, section in enumerate(doc.sections)
            ],
        )

    def _delete(self, cursor: sqlite3.Cursor, kind: DocumentKind, doc_id: str) -> None:
        cursor.execute("SELECT pk FROM documents WHERE kind = ? AND id = ?", (kind.value, doc_id))
        row = cursor.fetchone()
        if row is None:
            return
        # Sections first so the FTS delete trigger sees each row
        cursor.execute("DELETE FROM sections WHERE document_pk = ?", (row["pk"],))
        cursor.execute("DELETE FROM topics WHERE document_pk = ?", (row["pk"],))
        cursor.execute("DELETE FROM documents WHERE pk = ?", (row["pk"],))

    def upsert_document(self, doc: Document) -> None:
        """Insert a document, replacing any row with the same (kind, id)."""
        with self._write_cursor() as cursor:
            self.check_schema(cursor)
            self._delete(cursor, doc.kind, doc.id)
            self._insert(cursor, doc)

    def delete_documents(self, documents: list[Document]) -> None:
        with self._write_cursor() as cursor:
            self.check_schema(cursor)
            for doc in documents:
                self._delete(cursor, doc.kind, doc.id)

    @staticmethod
    def _where(flt: QueryFilter) -> tuple[str, list]:
        """SQL conditions for every predicate except text."""
        clauses: list[str] = []
        params: list = []
        if flt.id is not None:
            clauses.append("d.id = ?")
            params.append(flt.id)
        if flt.kind is not None:
            clauses.append("d.kind = ?")
            params.append(flt.kind.value)
        if flt.date is not None:
            clauses.append("d.date = ?")
            params.append(flt.date)
        if flt.date_after is not None:
            clauses.append("d.date > ?")
            params.append(flt.date_after)
        if flt.date_before is not None:
            clauses.append("d.date < ?")
            params.append(flt.date_before)
        if flt.status is not None:
            clauses.append("d.status = ?")
            params.append(flt.status)
        if flt.author is not None:
            clauses.append("d.author = ?")
            params.append(flt.author)
        if flt.topic is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM topics t WHERE t.document_pk = d.pk AND instr(t.topic_key, ?) > 0)"
            )
            params.append(flt.topic)
        where = " AND ".join(clauses) if clauses else "1=1"
        return where, params

    def select(self, flt: QueryFilter) -> dict[int, Document]:
        """Documents matching ``flt`` (ignoring text), keyed by row id."""
        where, params = self._where(flt)
        with self._read_cursor() as cursor:
            self.check_schema(cursor)
            cursor.execute(f"SELECT d.* FROM documents d WHERE {where} ORDER BY d.pk", params)
            documents = {row["pk"]: self._row_to_document(row) for row in cursor.fetchall()}
            if documents:
                cursor.execute(
                    f"""SELECT s.document_pk, s.heading, s.level, s.body
                    FROM sections s JOIN documents d ON d.pk = s.document_pk
                    WHERE {where}
                    ORDER BY s.document_pk, s.position""",
                    params,
                )
                for row in cursor.fetchall():
                    documents[row["document_pk"]].sections.append(
                        Section(heading=row["heading"], level=row["level"], body=row["body"])
                    )
            return documents

    def search(self, flt: QueryFilter) -> list[tuple[Document, float]]:
        """
        Rank documents whose sections match the text filter.

        A document scores as its best-matching section. Scores are negated
        bm25 values, so higher is better.
        """
        assert flt.text is not None
        match = build_match_query(flt.text)
        with self._read_cursor() as cursor:
            self.check_schema(cursor)
            cursor.execute(
                """SELECT s.document_pk, bm25(sections_fts, ?, ?) AS rank
                FROM sections_fts
                JOIN sections s ON s.pk = sections_fts.rowid
                WHERE sections_fts MATCH ?""",
                (*BM25_WEIGHTS, match),
            )
            best: dict[int, float] = {}
            for row in cursor.fetchall():
                rank = row["rank"]
                if row["document_pk"] not in best or rank < best[row["document_pk"]]:
                    best[row["document_pk"]] = rank

        if not best:
            return []
        documents = self.select(flt)
        ranked = [
            (doc, round(-best[pk], 6)) for pk, doc in documents.items() if pk in best
        ]
        ranked.sort(key=lambda item: item[0].id)
        ranked.sort(key=lambda item: (item[1], item[0].date or ""), reverse=True)
        return ranked

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        """Convert a database row to a Document without sections."""
        return Document(
            id=row["id"],
            kind=DocumentKind(row["kind"]),
            date=row["date"],
            status=row["status"],
            author=row["author"],
            title=row["title"],
            topics=json.loads(row["topics"]),
            extra=json.loads(row["extra"]),
            source_path=row["source_path"],
            checksum=row["checksum"],
            mtime=row["mtime"],
        )


class SqliteStorage(StorageAdapter):
    """
    Relational backend with full-text search.

    Filled by ``rebuild()`` or by an explicit migration from the JSON index;
    it is never swapped in for another backend automatically.
    """

    name = "sqlite"
    supports_full_text = True

    def __init__(self, root: Path, index_path: Path, verify_sources: bool = True):
        super().__init__(root, index_path, verify_sources)
        self.db = Database(index_path)

    def is_initialized(self) -> bool:
        return self.db.is_initialized()

    def _select(self, flt: QueryFilter) -> list[Document]:
        self._require_initialized()
        return list(self.db.select(flt).values())

    def _search(self, flt: QueryFilter) -> list[tuple[Document, float]]:
        self._require_initialized()
        return self.db.search(flt)

    def _write_entry(self, document: Document) -> None:
        self.db.upsert_document(document)

    def _delete_entries(self, documents: list[Document]) -> None:
        self.db.delete_documents(documents)

    def _replace_all(self, documents: list[Document]) -> None:
        self.db.replace_all(documents)
        logger.debug("Wrote %d entries to %s", len(documents), self.index_path)
