"""Tests for write tools."""

import pytest
from fastmcp import FastMCP

from knowsys_mcp.config import Config
from knowsys_mcp.errors import (
    DocumentNotFound,
    InvalidFilterCombination,
    InvalidStatusTransition,
    ReadOnlyError,
    SectionNotFound,
)
from knowsys_mcp.indexer.query import QueryEngine
from knowsys_mcp.sync import PlanSync
from knowsys_mcp.tools_write import check_write_permission, register_tools_write


def make_tools(config):
    engine = QueryEngine.from_config(config)
    if not engine.storage.is_initialized():
        engine.rebuild()
    mcp = FastMCP()
    register_tools_write(mcp, config, engine, PlanSync(config.pointer_dir, config.team_index_path))

    tools = {}
    for tool in mcp._tool_manager._tools.values():
        tools[tool.fn.__name__] = tool.fn
    return engine, tools


@pytest.fixture
def env(workspace, monkeypatch):
    monkeypatch.setenv("KNOWSYS_ROOT", str(workspace))
    for name in ("KNOWSYS_INDEX", "KNOWSYS_BACKEND", "KNOWSYS_READ_ONLY", "KNOWSYS_ARCHIVE_DAYS"):
        monkeypatch.delenv(name, raising=False)
    return workspace


@pytest.fixture
def engine_and_tools(env):
    return make_tools(Config.from_env())


class TestMutateSection:
    def test_append(self, engine_and_tools, env):
        engine, tools = engine_and_tools
        result = tools["mutate_section"]("2026-02-01-session", "Day 4", "append", "Ran the suite.")
        assert result["status"] == "updated"
        assert result["operation"] == "append"
        assert result["path"] == "sessions/2026-02-01-session.md"

        section = engine.get_section("2026-02-01-session", "Day 4")
        assert section.items[0]["content"] == "Wrote regression tests.\nRan the suite."

    def test_new_section_is_listed(self, engine_and_tools):
        _, tools = engine_and_tools
        result = tools["mutate_section"]("PLAN_deploy", "## Risks", "prepend", "Flaky runners.")
        assert {"heading": "Risks", "level": 2} in result["headings"]

    def test_insert_after_missing_section(self, engine_and_tools):
        _, tools = engine_and_tools
        with pytest.raises(SectionNotFound):
            tools["mutate_section"]("PLAN_deploy", "Risks", "insert_after", "x")

    def test_unknown_operation(self, engine_and_tools):
        _, tools = engine_and_tools
        with pytest.raises(ValueError, match="Invalid section operation"):
            tools["mutate_section"]("PLAN_deploy", "Goals", "replace", "x")


class TestUpdatePlanStatus:
    def test_transition(self, engine_and_tools):
        engine, tools = engine_and_tools
        result = tools["update_plan_status"]("PLAN_auth", "paused")
        assert result == {
            "status": "updated",
            "id": "PLAN_auth",
            "plan_status": "paused",
            "path": "plans/PLAN_auth.md",
        }
        assert engine.query({"status": "paused"}).items[0]["id"] == "PLAN_auth"

    def test_invalid_transition(self, engine_and_tools):
        _, tools = engine_and_tools
        with pytest.raises(InvalidStatusTransition):
            tools["update_plan_status"]("PLAN_old", "active")

    def test_unknown_plan(self, engine_and_tools):
        _, tools = engine_and_tools
        with pytest.raises(DocumentNotFound):
            tools["update_plan_status"]("PLAN_nope", "active")


class TestArchiveDocuments:
    def test_by_status(self, engine_and_tools, env):
        engine, tools = engine_and_tools
        result = tools["archive_documents"](kind="plan", statuses=["complete"])
        assert result == {"status": "archived", "count": 1}
        assert (env / "archive" / "plans" / "2025" / "12" / "PLAN_old.md").is_file()
        assert engine.exists("PLAN_old").total_count == 0

    def test_by_date(self, engine_and_tools):
        _, tools = engine_and_tools
        result = tools["archive_documents"](kind="session", before="2026-02-03")
        assert result["count"] == 2

    def test_malformed_before(self, engine_and_tools, env):
        engine, tools = engine_and_tools
        with pytest.raises(InvalidFilterCombination, match="expected YYYY-MM-DD"):
            tools["archive_documents"](before="2026/01/01")
        assert not (env / "archive").exists()
        assert engine.query().total_count == 7

    def test_default_age(self, env, monkeypatch):
        monkeypatch.setenv("KNOWSYS_ARCHIVE_DAYS", "100000")
        _, tools = make_tools(Config.from_env())
        assert tools["archive_documents"](kind="session")["count"] == 0


class TestRebuildIndex:
    def test_rebuild(self, engine_and_tools, env):
        _, tools = engine_and_tools
        (env / "learned" / "new-pattern.md").write_text("# New pattern\n")
        result = tools["rebuild_index"]()
        assert result["status"] == "rebuilt"
        assert result["backend"] == "json"
        assert result["indexed"] == 8
        assert result["skipped"] == 0

    def test_reports_parse_errors(self, engine_and_tools, env):
        _, tools = engine_and_tools
        (env / "plans" / "PLAN_bad.md").write_text("---\nstatus: [\n---\n")
        result = tools["rebuild_index"]()
        assert result["skipped"] == 1
        assert result["errors"][0]["path"] == "plans/PLAN_bad.md"
        assert result["errors"][0]["code"] == "invalid_metadata"


class TestMigrateIndex:
    def test_needs_sqlite_backend(self, engine_and_tools):
        _, tools = engine_and_tools
        with pytest.raises(ValueError, match="sqlite backend"):
            tools["migrate_index"]()

    def test_migrates_json_index(self, env, monkeypatch):
        make_tools(Config.from_env())  # builds the JSON index
        monkeypatch.setenv("KNOWSYS_BACKEND", "sqlite")
        config = Config.from_env()
        engine = QueryEngine.from_config(config)
        mcp = FastMCP()
        register_tools_write(mcp, config, engine, PlanSync(config.pointer_dir, config.team_index_path))
        migrate = next(t.fn for t in mcp._tool_manager._tools.values() if t.fn.__name__ == "migrate_index")

        result = migrate()
        assert result["status"] == "migrated"
        assert result["migrated"] == 7
        assert result["from_source"] is False
        assert engine.query({"text": "login"}).items[0]["id"] == "2026-02-01-session"


class TestSetActivePlan:
    def test_writes_own_pointer_and_syncs(self, engine_and_tools, env):
        _, tools = engine_and_tools
        result = tools["set_active_plan"]("Bob", plan_id="PLAN_deploy", status="active")
        assert result["pointer"] == "plans/active-bob.md"
        assert [row["author"] for row in result["rows"]] == ["alice", "bob"]
        assert "PLAN_deploy" in (env / "CURRENT_PLAN.md").read_text()

    def test_pointer_is_not_indexed(self, engine_and_tools):
        engine, tools = engine_and_tools
        tools["set_active_plan"]("bob", plan_id="PLAN_deploy")
        tools["rebuild_index"]()
        assert engine.exists("active-bob").total_count == 0


class TestReadOnly:
    def test_check_write_permission(self, env, monkeypatch):
        monkeypatch.setenv("KNOWSYS_READ_ONLY", "true")
        with pytest.raises(ReadOnlyError, match="read-only"):
            check_write_permission(Config.from_env())

    @pytest.mark.parametrize(
        "name,args",
        [
            ("mutate_section", ("PLAN_auth", "Goals", "append", "x")),
            ("update_plan_status", ("PLAN_auth", "paused")),
            ("archive_documents", ()),
            ("rebuild_index", ()),
            ("set_active_plan", ("bob",)),
        ],
    )
    def test_every_write_tool_refuses(self, env, monkeypatch, name, args):
        make_tools(Config.from_env())
        monkeypatch.setenv("KNOWSYS_READ_ONLY", "true")
        _, tools = make_tools(Config.from_env())
        before = sorted(str(p) for p in env.rglob("*"))
        with pytest.raises(ReadOnlyError):
            tools[name](*args)
        assert sorted(str(p) for p in env.rglob("*")) == before
