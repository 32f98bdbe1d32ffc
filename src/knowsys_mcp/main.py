"""Main entry point for the knowsys MCP server."""

import argparse
import logging
import sys

from fastmcp import FastMCP

from knowsys_mcp.config import BACKEND_INDEX_FILES, Config
from knowsys_mcp.errors import KnowsysError
from knowsys_mcp.indexer.database import SqliteStorage
from knowsys_mcp.indexer.json_backend import JsonStorage
from knowsys_mcp.indexer.migration import migrate_to_relational
from knowsys_mcp.indexer.query import QueryEngine
from knowsys_mcp.sync import PlanSync
from knowsys_mcp.tools import register_tools
from knowsys_mcp.tools_write import register_tools_write

logger = logging.getLogger(__name__)


def create_server(config: Config) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
    """
    mcp = FastMCP(
        name="knowsys",
        instructions=(
            "knowsys indexes session logs, implementation plans and learned patterns. "
            "Use query_documents in metadata mode to browse, get_section to read one "
            "section, and full mode only when the whole document is needed."
        ),
    )

    logger.info("Opening %s index at %s", config.backend, config.index_path)
    engine = QueryEngine.from_config(config)
    plan_sync = PlanSync(config.pointer_dir, config.team_index_path)

    # Only the JSON index is built implicitly; the relational one needs a rebuild or migration
    if not engine.storage.is_initialized():
        if config.backend == "json":
            logger.info("Index is empty, performing initial build...")
            report = engine.rebuild()
            logger.info(
                "Initial build complete: %d documents indexed, %d skipped",
                report.indexed,
                len(report.errors),
            )
        else:
            logger.warning(
                "%s index not built; run with --rebuild or --migrate, or call rebuild_index",
                config.backend,
            )

    logger.info("Registering read tools...")
    register_tools(mcp, engine, plan_sync, read_only=config.read_only)

    logger.info("Registering write tools...")
    register_tools_write(mcp, config, engine, plan_sync)

    logger.info("Server configured successfully")
    return mcp


def main() -> None:
    """Main function - starts the MCP server."""
    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="knowsys - MCP server for session, plan and pattern documents")
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Rebuild the index from source documents before starting",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Migrate the JSON index into the SQLite index before starting (implies --backend sqlite)",
    )
    parser.add_argument(
        "--backend",
        choices=sorted(BACKEND_INDEX_FILES),
        help="Index backend (overrides KNOWSYS_BACKEND)",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Run in read-only mode (disable write tools)",
    )
    args = parser.parse_args()

    backend = "sqlite" if args.migrate else args.backend
    try:
        config = Config.from_env(
            read_only_override=args.read_only if args.read_only else None,
            backend_override=backend,
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    logger.info("=" * 50)
    logger.info("knowsys starting...")
    logger.info("  KNOWSYS_ROOT:    %s", config.root)
    logger.info("  KNOWSYS_BACKEND: %s", config.backend)
    logger.info("  KNOWSYS_INDEX:   %s", config.index_path)
    logger.info("  READ_ONLY:       %s", config.read_only)
    logger.info("=" * 50)

    try:
        if args.migrate:
            sqlite_storage = SqliteStorage(config.root, config.index_path, verify_sources=config.verify_sources)
            json_storage = JsonStorage(
                config.root,
                config.root / BACKEND_INDEX_FILES["json"],
                verify_sources=config.verify_sources,
            )
            migration = migrate_to_relational(json_storage, sqlite_storage, force=True)
            logger.info("Migration complete: %d documents", migration.migrated)
        elif args.rebuild:
            logger.info("Rebuild requested...")
            report = QueryEngine.from_config(config).rebuild()
            logger.info("Rebuild complete: %d documents indexed, %d skipped", report.indexed, len(report.errors))
    except KnowsysError as e:
        logger.error("Index preparation failed: %s", e)
        sys.exit(1)

    try:
        mcp = create_server(config)
        logger.info("Starting MCP server on stdio...")
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)


if __name__ == "__main__":
    main()
