"""Tests for the workspace walker."""

from pathlib import Path

from knowsys_mcp.indexer.walker import (
    atomic_write_text,
    compute_hash,
    is_pointer_file,
    read_source,
    walk_workspace,
)


class TestWalkWorkspace:
    def test_missing_root_yields_nothing(self, tmp_path):
        assert list(walk_workspace(tmp_path / "missing")) == []

    def test_finds_sources_in_sorted_order(self, workspace):
        paths = [f.relative_path for f in walk_workspace(workspace)]
        assert paths == [
            "learned/error-handling.md",
            "plans/PLAN_auth.md",
            "plans/PLAN_deploy.md",
            "plans/PLAN_old.md",
            "sessions/2026-02-01-session.md",
            "sessions/2026-02-02-session.md",
            "sessions/2026-02-03-session.md",
        ]

    def test_skips_pointer_derived_archived_and_hidden(self, workspace):
        (workspace / "plans" / "CURRENT_PLAN.md").write_text("# Team\n")
        (workspace / "CURRENT_PLAN.md").write_text("# Team\n")
        archived = workspace / "sessions" / "archive" / "old.md"
        archived.parent.mkdir()
        archived.write_text("# Old\n")
        (workspace / "learned" / ".draft.md").write_text("# Draft\n")
        (workspace / "learned" / "notes.txt").write_text("not markdown")

        paths = {f.relative_path for f in walk_workspace(workspace)}
        assert "plans/active-alice.md" not in paths
        assert "plans/CURRENT_PLAN.md" not in paths
        assert "sessions/archive/old.md" not in paths
        assert "learned/.draft.md" not in paths
        assert len(paths) == 7

    def test_nested_folders(self, workspace):
        nested = workspace / "learned" / "python" / "typing.md"
        nested.parent.mkdir()
        nested.write_text("# Typing\n")
        paths = [f.relative_path for f in walk_workspace(workspace)]
        assert "learned/python/typing.md" in paths

    def test_source_file_fields(self, workspace):
        source = next(f for f in walk_workspace(workspace) if f.filename == "PLAN_auth.md")
        content = (workspace / "plans" / "PLAN_auth.md").read_bytes()
        assert source.folder == "plans"
        assert source.content == content
        assert source.content_hash == compute_hash(content)
        assert source.mtime > 0


class TestHelpers:
    def test_is_pointer_file(self):
        assert is_pointer_file(Path("plans/active-alice.md"))
        assert not is_pointer_file(Path("plans/PLAN_active.md"))
        assert not is_pointer_file(Path("plans/active-alice.txt"))

    def test_compute_hash_is_sha256(self):
        assert compute_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_atomic_write_text(self, tmp_path):
        target = tmp_path / "nested" / "file.md"
        atomic_write_text(target, "one\n")
        atomic_write_text(target, "two\n")
        assert target.read_text() == "two\n"
        assert [p.name for p in target.parent.iterdir()] == ["file.md"]

    def test_read_source(self, workspace):
        source = read_source(workspace, "learned/error-handling.md")
        assert source.relative_path == "learned/error-handling.md"
        assert source.folder == "learned"
        assert source.content.startswith(b"---\ntype: pattern")
