"""Tests for the SQLite database module."""

import sqlite3

import pytest

from knowsys_mcp.errors import IndexCorrupted, IndexNotInitialized, InvalidFilterCombination
from knowsys_mcp.indexer.database import SCHEMA_VERSION, Database, build_match_query
from knowsys_mcp.indexer.models import Document, DocumentKind, QueryFilter, Section


def make_doc(doc_id, kind=DocumentKind.PATTERN, topics=None, sections=None, **kwargs):
    return Document(
        id=doc_id,
        kind=kind,
        topics=topics or [],
        sections=sections or [],
        source_path=f"{kind.folder}/{doc_id}.md",
        checksum="0" * 64,
        mtime=1.5,
        **kwargs,
    )


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "knowledge.db")
    database.replace_all(
        [
            make_doc(
                "errors",
                topics=["Errors", "python"],
                sections=[Section("Error handling", 1, "Wrap adapter errors.\n")],
            ),
            make_doc(
                "retries",
                topics=["network"],
                sections=[Section("Retries", 1, "Back off on errors.\n"), Section("Notes", 2, "None.\n")],
                date="2026-01-02",
            ),
        ]
    )
    return database


class TestInitialization:
    def test_missing_file(self, tmp_path):
        database = Database(tmp_path / "knowledge.db")
        assert not database.is_initialized()
        with pytest.raises(IndexNotInitialized):
            database.select(QueryFilter())

    def test_replace_all_creates_parents(self, tmp_path):
        database = Database(tmp_path / "nested" / "dir" / "knowledge.db")
        database.replace_all([])
        assert database.is_initialized()

    def test_schema_version_recorded(self, db):
        conn = sqlite3.connect(str(db.db_path))
        try:
            row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        finally:
            conn.close()
        assert row == (SCHEMA_VERSION,)

    def test_fts_table_exists(self, db):
        conn = sqlite3.connect(str(db.db_path))
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='sections_fts'"
            ).fetchone()
        finally:
            conn.close()
        assert row is not None

    def test_no_temp_files_left(self, db):
        assert [p.name for p in db.db_path.parent.iterdir()] == ["knowledge.db"]

    def test_wrong_schema_version(self, db):
        conn = sqlite3.connect(str(db.db_path))
        conn.execute("UPDATE meta SET value = '99' WHERE key = 'schema_version'")
        conn.commit()
        conn.close()
        with pytest.raises(IndexCorrupted, match="schema version"):
            db.select(QueryFilter())


class TestSelect:
    def test_select_all_with_sections(self, db):
        documents = list(db.select(QueryFilter()).values())
        assert [d.id for d in documents] == ["errors", "retries"]
        assert documents[1].sections == [
            Section("Retries", 1, "Back off on errors.\n"),
            Section("Notes", 2, "None.\n"),
        ]
        assert documents[0].topics == ["Errors", "python"]
        assert documents[0].mtime == 1.5

    def test_topic_filter_uses_lowercase_keys(self, db):
        documents = db.select(QueryFilter(topic="err"))
        assert [d.id for d in documents.values()] == ["errors"]

    def test_date_filter(self, db):
        documents = db.select(QueryFilter(date_after="2026-01-01"))
        assert [d.id for d in documents.values()] == ["retries"]


class TestWrites:
    def test_upsert_replaces_by_kind_and_id(self, db):
        db.upsert_document(make_doc("errors", sections=[Section("Replaced", 1, "New text.\n")]))
        documents = db.select(QueryFilter(id="errors"))
        assert len(documents) == 1
        assert next(iter(documents.values())).sections == [Section("Replaced", 1, "New text.\n")]

    def test_fts_follows_upsert(self, db):
        db.upsert_document(make_doc("errors", sections=[Section("Replaced", 1, "New text.\n")]))
        hits = db.search(QueryFilter(text="wrap"))
        assert hits == []

    def test_delete(self, db):
        db.delete_documents([make_doc("errors")])
        assert [d.id for d in db.select(QueryFilter()).values()] == ["retries"]
        assert [doc.id for doc, _ in db.search(QueryFilter(text="errors"))] == ["retries"]


class TestSearch:
    def test_ranks_heading_matches(self, db):
        ranked = db.search(QueryFilter(text="errors"))
        assert {doc.id for doc, _ in ranked} == {"errors", "retries"}
        assert all(score > 0 for _, score in ranked)
        scores = [score for _, score in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_all_terms_required(self, db):
        ranked = db.search(QueryFilter(text="back off"))
        assert [doc.id for doc, _ in ranked] == ["retries"]

    def test_respects_other_filters(self, db):
        ranked = db.search(QueryFilter(text="errors", topic="network"))
        assert [doc.id for doc, _ in ranked] == ["retries"]


class TestBuildMatchQuery:
    def test_quotes_terms(self):
        assert build_match_query("login bug") == '"login" "bug"'

    def test_operators_are_plain_words(self):
        assert build_match_query("auth OR NOT x") == '"auth" "OR" "NOT" "x"'

    def test_punctuation_only(self):
        with pytest.raises(InvalidFilterCombination):
            build_match_query("*:()")
