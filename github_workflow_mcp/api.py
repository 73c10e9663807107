"""
GitHub Workflow MCP Server - HTTP and WebSocket transports

MCP protocol endpoints (JSON-RPC 2.0):
    POST /mcp            - one request body, one response body
    GET  /mcp/ws         - WebSocket; one request per text frame, one reply each

REST shortcuts:
    GET  /health
    POST /github/push
    POST /github/scan-tasks
    POST /github/merge

Every HTTP request and WebSocket handshake passes the per-client rate limiter
first; WebSocket frames are rate limited individually as well.
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import WorkflowSettings, settings as default_settings
from .dispatcher import Dispatcher, parse_command
from .errors import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    WORKFLOW_ERROR,
    AuthenticationError,
    GitHubApiError,
    McpServerError,
    WorkflowValidationError,
)
from .protocol import SERVER_NAME, SERVER_VERSION, TOOL_MERGE, TOOL_PUSH, TOOL_SCAN_TASKS
from .rate_limiter import ClientRateLimiter, RateLimitMiddleware, client_address_from_scope
from .workflows import WorkflowEngine, build_engine

logger = logging.getLogger(__name__)


def _http_status(exc: McpServerError) -> int:
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, GitHubApiError):
        return 502
    if isinstance(exc, WorkflowValidationError):
        return 400
    if exc.code in (INVALID_PARAMS, METHOD_NOT_FOUND, INVALID_REQUEST):
        return 400
    if exc.code == WORKFLOW_ERROR:
        return 409
    return 500


def create_app(
    config: Optional[WorkflowSettings] = None,
    engine: Optional[WorkflowEngine] = None,
    limiter: Optional[ClientRateLimiter] = None,
) -> FastAPI:
    config = config or default_settings
    if engine is None:
        engine = build_engine(config)
    if limiter is None:
        limiter = ClientRateLimiter(
            requests_per_minute=config.rate_limit_requests_per_minute,
            max_clients=config.rate_limit_max_clients,
        )
    dispatcher = Dispatcher(engine)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        logger.info("Starting %s (working tree: %s)", SERVER_NAME, config.repo_path)
        yield
        logger.info("Shutting down %s", SERVER_NAME)
        engine.git.shutdown()

    app = FastAPI(
        title="GitHub Workflow MCP Server",
        description="MCP server (HTTP + WebSocket) for push, task scan and merge workflows",
        version=SERVER_VERSION,
        lifespan=app_lifespan,
    )
    app.state.dispatcher = dispatcher
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Added last so it runs first
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------
    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "service": SERVER_NAME,
            "version": SERVER_VERSION,
            "github_configured": config.github_configured,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # -----------------------------------------------------------------------
    # MCP over HTTP
    # -----------------------------------------------------------------------
    @app.post("/mcp")
    async def mcp_request(request: Request):
        body = await request.body()
        response = await dispatcher.dispatch_text(body)
        return JSONResponse(response)

    # -----------------------------------------------------------------------
    # MCP over WebSocket
    # -----------------------------------------------------------------------
    @app.websocket("/mcp/ws")
    async def mcp_websocket(websocket: WebSocket):
        await websocket.accept()
        address = client_address_from_scope(websocket.scope)
        logger.info("WebSocket connection established from %s", address)

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket connection closed")
                break

            text = message.get("text")
            if text is None:
                # binary frames are not part of the protocol
                continue

            if limiter.try_acquire(address):
                response = await dispatcher.dispatch_text(text)
            else:
                response = dispatcher.rate_limited(text)

            try:
                await websocket.send_text(json.dumps(response))
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.error("Failed to send WebSocket response: %s", exc)
                break

    # -----------------------------------------------------------------------
    # REST shortcuts
    # -----------------------------------------------------------------------
    async def _run_tool(tool_name: str, arguments: Optional[Dict[str, Any]]):
        try:
            command = parse_command(tool_name, arguments or {})
            return await engine.execute(command)
        except McpServerError as exc:
            logger.error("%s failed: %s", tool_name, exc.message)
            raise HTTPException(status_code=_http_status(exc), detail=exc.to_error())

    @app.post("/github/push")
    async def github_push(arguments: Optional[Dict[str, Any]] = Body(default=None)):
        """Run the push workflow."""
        return await _run_tool(TOOL_PUSH, arguments)

    @app.post("/github/scan-tasks")
    async def github_scan_tasks(arguments: Optional[Dict[str, Any]] = Body(default=None)):
        """Scan the GitHub Project for open tasks."""
        return await _run_tool(TOOL_SCAN_TASKS, arguments)

    @app.post("/github/merge")
    async def github_merge(arguments: Optional[Dict[str, Any]] = Body(default=None)):
        """Run the merge workflow."""
        return await _run_tool(TOOL_MERGE, arguments)

    return app
