"""Tests for MCP read tools."""

import pytest
from fastmcp import FastMCP

from knowsys_mcp.config import Config
from knowsys_mcp.indexer.query import QueryEngine
from knowsys_mcp.sync import PlanSync
from knowsys_mcp.tools import register_tools


def extract_tools(mcp):
    tools = {}
    for tool in mcp._tool_manager._tools.values():
        tools[tool.fn.__name__] = tool.fn
    return tools


@pytest.fixture
def config(workspace, monkeypatch):
    monkeypatch.setenv("KNOWSYS_ROOT", str(workspace))
    monkeypatch.delenv("KNOWSYS_INDEX", raising=False)
    monkeypatch.delenv("KNOWSYS_BACKEND", raising=False)
    monkeypatch.delenv("KNOWSYS_READ_ONLY", raising=False)
    return Config.from_env()


def build_tools(config, read_only=False, rebuild=True):
    engine = QueryEngine.from_config(config)
    if rebuild:
        engine.rebuild()
    mcp = FastMCP()
    register_tools(mcp, engine, PlanSync(config.pointer_dir, config.team_index_path), read_only=read_only)
    return extract_tools(mcp)


@pytest.fixture
def tools(config):
    return build_tools(config)


class TestRegistration:
    def test_registers_read_tools(self, tools):
        assert set(tools) == {"query_documents", "get_section", "document_exists", "sync_plans"}


class TestQueryDocuments:
    def test_filters_and_pagination(self, tools):
        result = tools["query_documents"](kind="session", date_after="2026-02-01")
        assert [item["id"] for item in result["items"]] == ["2026-02-03-session", "2026-02-02-session"]
        assert result["totalCount"] == 2
        assert result["hasMore"] is False

    def test_limit_and_offset(self, tools):
        result = tools["query_documents"](limit=2, offset=1)
        assert len(result["items"]) == 2
        assert result["totalCount"] == 7
        assert result["hasMore"] is True

    def test_section_mode(self, tools):
        result = tools["query_documents"](kind="session", section="Day 3")
        assert result["items"][0]["content"] == "Fixed the login bug."

    def test_full_mode(self, tools):
        result = tools["query_documents"](kind="pattern", mode="full")
        assert "Wrap adapter errors" in result["items"][0]["content"]

    def test_error_is_returned_not_raised(self, tools):
        result = tools["query_documents"](text="login")
        assert result["error"]["code"] == "invalid_filter_combination"
        assert result["items"] == []

    def test_uninitialized_index(self, config):
        tools = build_tools(config, rebuild=False)
        result = tools["query_documents"]()
        assert result["error"]["code"] == "index_not_initialized"


class TestGetSection:
    def test_get_section(self, tools):
        result = tools["get_section"]("PLAN_auth", "goals")
        assert result["items"][0]["content"] == "Replace session cookies with tokens."

    def test_missing_section(self, tools):
        result = tools["get_section"]("PLAN_auth", "Risks")
        assert result["error"]["code"] == "section_not_found"

    def test_missing_document(self, tools):
        result = tools["get_section"]("PLAN_nope", "Goals")
        assert result["error"]["code"] == "document_not_found"


class TestDocumentExists:
    def test_exists(self, tools):
        result = tools["document_exists"]("PLAN_auth", kind="plan")
        assert result["exists"] is True
        assert result["metadata"]["status"] == "active"

    def test_missing(self, tools):
        assert tools["document_exists"]("PLAN_nope") == {"exists": False, "metadata": None}

    def test_error(self, config):
        tools = build_tools(config, rebuild=False)
        result = tools["document_exists"]("PLAN_auth")
        assert result["exists"] is False
        assert result["error"]["code"] == "index_not_initialized"


class TestSyncPlans:
    def test_writes_team_index(self, tools, workspace):
        result = tools["sync_plans"]()
        assert result["rows"] == [
            {"author": "alice", "planId": "PLAN_auth", "status": "Active", "lastUpdated": None}
        ]
        assert (workspace / "CURRENT_PLAN.md").is_file()

    def test_read_only_does_not_write(self, config, workspace):
        tools = build_tools(config, read_only=True)
        result = tools["sync_plans"]()
        assert len(result["rows"]) == 1
        assert "outputPath" not in result
        assert not (workspace / "CURRENT_PLAN.md").exists()
