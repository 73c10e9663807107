"""
JSON-RPC dispatcher shared by every transport.

`dispatch()` takes one decoded envelope and always returns exactly one
response dict carrying the request's id (null when there is none).
`dispatch_text()` does the same for a raw frame or request body.
"""
import json
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Union

from pydantic import ValidationError

from .errors import (
    INTERNAL_ERROR,
    PARSE_ERROR,
    RATE_LIMIT_ERROR,
    InvalidParamsError,
    InvalidRequestError,
    McpServerError,
    MethodNotFoundError,
)
from .protocol import (
    INITIALIZE,
    JSONRPC_VERSION,
    MCP_VERSION,
    METHOD_TOOLS,
    NOTIFICATIONS_INITIALIZED,
    PING,
    RESOURCE_PROJECT_TASKS,
    RESOURCE_WORKFLOW_STATUS,
    RESOURCES_LIST,
    RESOURCES_READ,
    SERVER_CAPABILITIES,
    SERVER_NAME,
    SERVER_VERSION,
    TOOL_ARGUMENTS,
    TOOLS_CALL,
    TOOLS_LIST,
    WorkflowCommand,
    error_response,
    list_resources,
    list_tools,
    success_response,
)
from .workflows import WorkflowEngine

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


def parse_command(tool_name: str, arguments: Any) -> WorkflowCommand:
    """Map a tool's JSON arguments onto its workflow command."""
    model = TOOL_ARGUMENTS.get(tool_name)
    if model is None:
        raise MethodNotFoundError(f"Unknown tool: {tool_name}")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidParamsError(f"Arguments for {tool_name} must be an object")
    try:
        return model.model_validate(arguments).to_command()
    except ValidationError as exc:
        raise InvalidParamsError(
            f"Invalid arguments for {tool_name}",
            {"errors": [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]},
        ) from exc


class Dispatcher:
    """Routes protocol methods to the workflow engine."""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self._handlers: Dict[str, Handler] = {
            INITIALIZE: self._initialize,
            TOOLS_LIST: self._tools_list,
            TOOLS_CALL: self._tools_call,
            RESOURCES_LIST: self._resources_list,
            RESOURCES_READ: self._resources_read,
            NOTIFICATIONS_INITIALIZED: self._acknowledge,
            PING: self._acknowledge,
        }
        for method, tool_name in METHOD_TOOLS.items():
            self._handlers[method] = partial(self._workflow_alias, tool_name)

    @property
    def methods(self):
        return tuple(self._handlers)

    # ── Entry points ───────────────────────────────────────────────────────

    async def dispatch_text(self, text: Union[str, bytes]) -> Dict[str, Any]:
        try:
            envelope = json.loads(text)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.error("Failed to parse message: %s", exc)
            return error_response(None, PARSE_ERROR, "Invalid JSON")
        return await self.dispatch(envelope)

    async def dispatch(self, envelope: Any) -> Dict[str, Any]:
        request_id = envelope.get("id") if isinstance(envelope, dict) else None
        try:
            method, params = self._validate(envelope)
            handler = self._handlers.get(method)
            if handler is None:
                raise MethodNotFoundError(f"Method not found: {method}")
            logger.debug("Handling request: method=%s id=%r", method, request_id)
            result = await handler(params)
        except McpServerError as exc:
            logger.info("Request %r failed with %s: %s", request_id, exc.code, exc.message)
            return error_response(request_id, exc.code, exc.message, exc.data or None)
        except Exception as exc:
            logger.exception("Unhandled error while dispatching request %r", request_id)
            return error_response(request_id, INTERNAL_ERROR, f"Internal error: {exc}")
        return success_response(request_id, result)

    def rate_limited(self, text: Union[str, bytes]) -> Dict[str, Any]:
        """Response for a frame rejected by the rate limiter (id echoed when readable)."""
        request_id = None
        try:
            envelope = json.loads(text)
        except (ValueError, UnicodeDecodeError):
            envelope = None
        if isinstance(envelope, dict):
            request_id = envelope.get("id")
        return error_response(request_id, RATE_LIMIT_ERROR, "Rate limit exceeded")

    # ── Validation ─────────────────────────────────────────────────────────

    @staticmethod
    def _validate(envelope: Any):
        if not isinstance(envelope, dict):
            raise InvalidRequestError("Request must be a JSON object")
        if envelope.get("jsonrpc") != JSONRPC_VERSION:
            raise InvalidRequestError('Request must carry "jsonrpc": "2.0"')
        method = envelope.get("method")
        if not isinstance(method, str) or not method:
            raise InvalidRequestError("Request method must be a non-empty string")
        params = envelope.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise InvalidParamsError("Request params must be an object")
        return method, params

    # ── Handlers ───────────────────────────────────────────────────────────

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client = params.get("clientInfo") or {}
        if client:
            logger.info("Client initialized: %s %s", client.get("name"), client.get("version"))
        return {
            "protocolVersion": MCP_VERSION,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    async def _tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": list_tools()}

    async def _tools_call(self, params: Dict[str, Any]) -> Any:
        if not params:
            raise InvalidParamsError("Missing parameters for tools/call")
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("Missing tool name")
        command = parse_command(name, params.get("arguments"))
        return await self.engine.execute(command)

    async def _workflow_alias(self, tool_name: str, params: Dict[str, Any]) -> Any:
        return await self.engine.execute(parse_command(tool_name, params))

    async def _resources_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"resources": list_resources()}

    async def _resources_read(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not params:
            raise InvalidParamsError("Missing parameters for resources/read")
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("Missing URI for resources/read")

        if uri == RESOURCE_WORKFLOW_STATUS:
            content = await self.engine.get_status()
        elif uri == RESOURCE_PROJECT_TASKS:
            content = await self.engine.get_tasks()
        else:
            raise MethodNotFoundError(f"Unknown resource: {uri}")

        return {
            "contents": [{
                "uri": uri,
                "mimeType": "application/json",
                "text": json.dumps(content, indent=2),
            }]
        }

    async def _acknowledge(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}
