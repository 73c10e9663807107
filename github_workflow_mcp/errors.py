"""
Error codes and exception types shared by the dispatcher and the workflows.

Every exception carries a stable JSON-RPC code, a human message and optional
structured data, so the dispatcher can put it on the wire unchanged.
"""
from typing import Any, Dict, Optional

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

# Domain codes
GITHUB_API_ERROR = -32000
AUTHENTICATION_ERROR = -32001
RATE_LIMIT_ERROR = -32002
WORKFLOW_ERROR = -32003

__all__ = [
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "GITHUB_API_ERROR",
    "AUTHENTICATION_ERROR",
    "RATE_LIMIT_ERROR",
    "WORKFLOW_ERROR",
    "McpServerError",
    "InvalidRequestError",
    "InvalidParamsError",
    "MethodNotFoundError",
    "GitHubApiError",
    "AuthenticationError",
    "RateLimitError",
    "WorkflowError",
    "WorkflowValidationError",
    "GitCommandError",
]


class McpServerError(Exception):
    """Base error with a JSON-RPC code."""

    code = INTERNAL_ERROR

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.data: Dict[str, Any] = dict(data or {})
        if code is not None:
            self.code = code

    def add_context(self, **context: Any) -> "McpServerError":
        """Attach context without overwriting keys set closer to the failure."""
        for key, value in context.items():
            self.data.setdefault(key, value)
        return self

    def to_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            error["data"] = self.data
        return error


class InvalidRequestError(McpServerError):
    code = INVALID_REQUEST


class InvalidParamsError(McpServerError):
    code = INVALID_PARAMS


class MethodNotFoundError(McpServerError):
    code = METHOD_NOT_FOUND


class GitHubApiError(McpServerError):
    """Non-2xx answer from GitHub, or a GraphQL response carrying errors."""

    code = GITHUB_API_ERROR

    def __init__(self, message: str, status_code: int = 0, body: str = "", data: Optional[Dict[str, Any]] = None):
        super().__init__(message, data)
        self.status_code = status_code
        self.body = body
        self.data.setdefault("status_code", status_code)
        if body:
            self.data.setdefault("body", body[:2000])


class AuthenticationError(McpServerError):
    """No usable GitHub credential."""

    code = AUTHENTICATION_ERROR


class RateLimitError(McpServerError):
    code = RATE_LIMIT_ERROR


class WorkflowError(McpServerError):
    code = WORKFLOW_ERROR


class WorkflowValidationError(WorkflowError):
    """A precondition failed before anything was mutated."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, data)
        self.data.setdefault("kind", "validation")


class GitCommandError(WorkflowError):
    """A git invocation exited non-zero (or could not be started).

    The message carries stderr, or stdout when git reported only there
    (`commit` with nothing staged). The invocation is kept under
    `git_command`; `command` names the workflow.
    """

    def __init__(self, command: str, returncode: int, stderr: str, stdout: str = ""):
        stderr = (stderr or "").strip()
        stdout = (stdout or "").strip()
        output = stderr or stdout
        message = f"git {command} failed"
        if output:
            message = f"{message}: {output}"
        super().__init__(
            message,
            {
                "kind": "git",
                "git_command": f"git {command}",
                "returncode": returncode,
                "stderr": stderr,
                "output": output,
            },
        )
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        self.output = output
