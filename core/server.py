"""
MCP server instance for lark-md-sync.

Tool modules register themselves on ``server`` at import time; ``main``
imports them and runs the server over stdio.
"""

import logging
import os

from fastmcp import FastMCP

from auth.config import get_lark_config

logger = logging.getLogger(__name__)

server = FastMCP("lark-md-sync")


def configure_logging() -> None:
    """Configure root logging from ``LARK_LOG_LEVEL`` (default INFO)."""
    level_name = os.getenv("LARK_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main() -> None:
    configure_logging()

    # Import for side effects: registers the document tools on ``server``.
    import larkdocs.writing  # noqa: F401

    config = get_lark_config()
    logger.info(f"Starting lark-md-sync MCP server: {config.get_environment_summary()}")
    if not config.is_configured():
        logger.warning("LARK_APP_ID is not set; start_lark_auth will fail until it is configured")
    server.run()


if __name__ == "__main__":
    main()
