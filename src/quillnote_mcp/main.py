#!/usr/bin/env python
"""Main entry point for the Quillnote MCP server."""
import argparse
import asyncio
import atexit
import logging
import os
import sys
from pathlib import Path

from quillnote_mcp.config import config
from quillnote_mcp.exceptions import ConfigurationError
from quillnote_mcp.models.db_models import create_db_engine, init_db
from quillnote_mcp.observability import configure_logging, metrics
from quillnote_mcp.server.mcp_server import QuillnoteMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Quillnote MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("QUILLNOTE_DATABASE_PATH")
    )
    parser.add_argument(
        "--user-id",
        help="ID of the user the server acts for",
        type=str,
        default=os.environ.get("QUILLNOTE_USER_ID")
    )
    parser.add_argument(
        "--user-email",
        help="Email of the user the server acts for",
        type=str,
        default=os.environ.get("QUILLNOTE_USER_EMAIL")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("QUILLNOTE_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.user_id:
        config.user_id = args.user_id
    if args.user_email:
        config.user_email = args.user_email


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    if metrics.save_metrics():
        logging.getLogger(__name__).info("Metrics saved to disk on shutdown")


async def _prepare_database() -> None:
    """Create the schema on a short-lived engine.

    The engine is disposed afterwards so no pooled connection stays bound
    to this event loop; the server opens its own once it is running.
    """
    engine = create_db_engine()
    try:
        await init_db(engine)
    finally:
        await engine.dispose()


def main(argv=None):
    """Run the Quillnote MCP server."""
    # Parse arguments and update config
    args = parse_args(argv)
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    # Register metrics save on shutdown
    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using database: {config.get_db_url()}")
        asyncio.run(_prepare_database())
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        server = QuillnoteMcpServer()
    except ConfigurationError as e:
        logger.error(f"{e.message}. Use --user-id and --user-email to set the acting user.")
        sys.exit(2)

    try:
        logger.info("Starting Quillnote MCP server")
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
