"""Entry-point for the GitHub Workflow MCP Server."""
import argparse
import logging
import sys

import uvicorn

from .config import settings
from .logger import setup_logging


def _run_mcp_stdio():
    from .server import create_mcp_server

    logging.info("Starting GitHub Workflow MCP Server (stdio transport)")
    create_mcp_server(settings).run(transport="stdio")


def _run_http(host: str, port: int):
    """Start the HTTP + WebSocket server (passes the app object directly)."""
    from .api import create_app

    logging.info("Starting GitHub Workflow MCP Server on %s:%s", host, port)
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


def main():
    parser = argparse.ArgumentParser(description="GitHub Workflow MCP Server")
    parser.add_argument(
        "--mode",
        choices=["http", "mcp-stdio"],
        default="http",
        help="http (JSON-RPC over HTTP + WebSocket) | mcp-stdio",
    )
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    args = parser.parse_args()

    # stdout carries protocol frames in stdio mode
    setup_logging(
        level=settings.log_level,
        log_file=settings.log_file or None,
        stream=sys.stderr if args.mode == "mcp-stdio" else None,
    )

    if args.mode == "mcp-stdio":
        _run_mcp_stdio()
    else:
        _run_http(args.host, args.port)


if __name__ == "__main__":
    main()
