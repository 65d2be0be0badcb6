"""Main entry point for qdamcp MCP server."""

import argparse
import logging
import sys
from pathlib import Path

from fastmcp import FastMCP

from qda_mcp.auth import get_auth_provider
from qda_mcp.autosave import AutosaveManager
from qda_mcp.config import Config
from qda_mcp.prompts import register_prompts
from qda_mcp.resources import register_resources
from qda_mcp.store import QDAStore
from qda_mcp.suggestions import SuggestionClient
from qda_mcp.tools import register_tools
from qda_mcp.tools_write import register_tools_write

logger = logging.getLogger(__name__)


def create_server(config: Config) -> tuple[FastMCP, QDAStore, AutosaveManager | None]:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.

    Returns:
        Tuple of (server, store, autosave manager). The autosave manager is
        None when QDA_AUTOSAVE_INTERVAL is 0 and is not started yet.
    """
    auth_provider = get_auth_provider(config)

    mcp = FastMCP(
        name="qdaMCP",
        instructions=(
            "qdaMCP is a qualitative data analysis workbench. Studies hold documents; "
            "code spans of document text as excerpts, organize codes in a three-level "
            "hierarchy and group them into themes. Use the analysis tools (code tree, "
            "co-occurrences, network graph) to explore patterns and the export tools "
            "to get project JSON or CSV."
        ),
        auth=auth_provider,
    )

    logger.info("Loading state from %s", config.qda_state)
    store = QDAStore.from_config(config)

    autosave: AutosaveManager | None = None
    if config.autosave_interval > 0:
        autosave = AutosaveManager(store, config.autosave_interval)
    else:
        logger.info("Autosave disabled, saving after every write")

    suggestions = SuggestionClient(config)
    if not suggestions.enabled:
        logger.info("QDA_AI_API_KEY not set, suggestions use local heuristics")

    logger.info("Registering resources...")
    register_resources(mcp, store)

    logger.info("Registering read tools...")
    register_tools(mcp, store, suggestions, read_only=config.read_only)

    logger.info("Registering write tools...")
    register_tools_write(mcp, config, store)

    logger.info("Registering prompts...")
    register_prompts(mcp, store)

    logger.info("Server configured successfully")
    return mcp, store, autosave


def main() -> None:
    """Main function - starts the MCP server."""
    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="qdaMCP - MCP server for qualitative data analysis")
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Run in read-only mode (disable write tools)",
    )
    parser.add_argument(
        "--state",
        type=Path,
        default=None,
        help="Path of the JSON state file (overrides QDA_STATE)",
    )
    args = parser.parse_args()

    # CLI flags override env vars
    config = Config.from_env(
        read_only_override=args.read_only if args.read_only else None,
        state_override=args.state,
    )

    logger.info("=" * 50)
    logger.info("qdaMCP starting...")
    logger.info("  QDA_ROOT:  %s", config.qda_root)
    logger.info("  QDA_PORT:  %s", config.qda_port)
    logger.info("  QDA_STATE: %s", config.qda_state)
    logger.info("  AUTH:      %s", "enabled" if config.auth_token else "disabled")
    logger.info("  READ_ONLY: %s", config.read_only)
    logger.info("  AUTOSAVE:  %s", f"{config.autosave_interval}s" if config.autosave_interval else "every write")
    logger.info("  AI:        %s", config.ai_model if config.ai_api_key else "local heuristics")
    logger.info("=" * 50)

    autosave: AutosaveManager | None = None
    try:
        mcp, store, autosave = create_server(config)
        if autosave is not None:
            autosave.start()
        logger.info("Starting MCP server on port %s...", config.qda_port)
        mcp.run(transport="sse", host="0.0.0.0", port=config.qda_port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)
    finally:
        if autosave is not None:
            autosave.stop()


if __name__ == "__main__":
    main()
