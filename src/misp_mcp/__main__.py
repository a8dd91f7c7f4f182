"""Entry point for running the MISP MCP server.

Usage:
    python -m misp_mcp

Environment Variables:
    MISP_URL: MISP server URL (default: https://localhost)
    MISP_KEY: API key, sent as the Authorization header
    MISP_TIMEOUT: Request timeout in seconds (default: 60)
    MISP_SSL_VERIFY: Verify TLS certificates (default: true)
    MISP_MAX_RESULTS: Maximum page size for search_events (default: 100)
    MISP_LOG_FORMAT: Log format - "json" (default) or "text"

The key can also be provided via:
    ~/.config/misp-mcp/key (with 600 permissions)
    .env file (MISP_KEY=...)
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from .config import Config
from .errors import ConfigurationError
from .logging import setup_logging
from .server import MISPMCPServer


def main() -> None:
    """Main entry point."""
    json_format = os.getenv("MISP_LOG_FORMAT", "json").lower() != "text"
    setup_logging(json_format=json_format)
    logger = logging.getLogger("misp_mcp")

    try:
        config = Config.load()
        logger.info(f"Starting MISP MCP server: {config}")

        server = MISPMCPServer(config)
        asyncio.run(server.run())

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        print("\nTo configure, set MISP_KEY environment variable", file=sys.stderr)
        print("or create ~/.config/misp-mcp/key file", file=sys.stderr)
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Shutting down")

    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
