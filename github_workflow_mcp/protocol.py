"""
Protocol data model: method names, tool and resource descriptors, tool
argument models and the three workflow commands.
"""
import copy
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, StrictBool, StrictInt, StrictStr

JSONRPC_VERSION = "2.0"
MCP_VERSION = "2024-11-05"
SERVER_NAME = "github-workflow-mcp"
SERVER_VERSION = "1.0.0"

# ── Methods ────────────────────────────────────────────────────────────────

INITIALIZE = "initialize"
TOOLS_LIST = "tools/list"
TOOLS_CALL = "tools/call"
RESOURCES_LIST = "resources/list"
RESOURCES_READ = "resources/read"
NOTIFICATIONS_INITIALIZED = "notifications/initialized"
PING = "ping"

GITHUB_PUSH = "github/push"
GITHUB_SCAN_TASKS = "github/scan-tasks"
GITHUB_MERGE = "github/merge"

# ── Tools & resources ──────────────────────────────────────────────────────

TOOL_PUSH = "github_push"
TOOL_SCAN_TASKS = "github_scan_tasks"
TOOL_MERGE = "github_merge"

RESOURCE_WORKFLOW_STATUS = "github://workflow/status"
RESOURCE_PROJECT_TASKS = "github://projects/tasks"

TASK_TYPES = ["bug", "feature", "enhancement", "documentation", "refactor", "test", "chore"]

TOOLS: Tuple[Dict[str, Any], ...] = (
    {
        "name": TOOL_PUSH,
        "description": "Intelligent git push with PR management and workflow automation",
        "inputSchema": {
            "type": "object",
            "properties": {
                "branch": {
                    "type": "string",
                    "description": "Branch to push (defaults to current branch)",
                },
                "message": {
                    "type": "string",
                    "description": "Optional commit message if changes need to be committed",
                },
                "ready_for_review": {
                    "type": "boolean",
                    "description": "Mark PR as ready for review after push",
                },
            },
        },
    },
    {
        "name": TOOL_SCAN_TASKS,
        "description": "Scan GitHub Projects for tasks and present organized by type/priority",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project_number": {
                    "type": "string",
                    "description": "GitHub Project number (optional, will auto-detect from TODO.md)",
                },
                "filter_type": {
                    "type": "string",
                    "enum": TASK_TYPES,
                    "description": "Filter tasks by type",
                },
                "status": {
                    "type": "string",
                    "description": "Filter tasks by status (In Progress, To Do, etc.)",
                },
            },
        },
    },
    {
        "name": TOOL_MERGE,
        "description": "Complete merge workflow with checks, cleanup, and branch deletion",
        "inputSchema": {
            "type": "object",
            "properties": {
                "branch": {
                    "type": "string",
                    "description": "Branch to merge (defaults to current branch)",
                },
                "delete_branch": {
                    "type": "boolean",
                    "description": "Delete branch after merge (default: true)",
                },
                "cleanup_work_folder": {
                    "type": "boolean",
                    "description": "Clean up work folder after merge (default: false)",
                },
            },
        },
    },
)

RESOURCES: Tuple[Dict[str, Any], ...] = (
    {
        "uri": RESOURCE_WORKFLOW_STATUS,
        "name": "Workflow Status",
        "description": "Current GitHub workflow status and active tasks",
        "mimeType": "application/json",
    },
    {
        "uri": RESOURCE_PROJECT_TASKS,
        "name": "Project Tasks",
        "description": "GitHub Project tasks with current status",
        "mimeType": "application/json",
    },
)

SERVER_CAPABILITIES = {
    "tools": {"listChanged": True},
    "resources": {"subscribe": False, "listChanged": True},
    "logging": {"level": "info"},
}


def list_tools():
    return copy.deepcopy(list(TOOLS))


def list_resources():
    return copy.deepcopy(list(RESOURCES))


# ── Workflow commands ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class PushCommand:
    branch: Optional[str] = None
    message: Optional[str] = None
    ready_for_review: Optional[bool] = None


@dataclass(frozen=True)
class ScanTasksCommand:
    project_number: Optional[str] = None
    filter_type: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class MergeCommand:
    branch: Optional[str] = None
    delete_branch: Optional[bool] = None
    cleanup_work_folder: Optional[bool] = None


WorkflowCommand = Union[PushCommand, ScanTasksCommand, MergeCommand]


# ── Tool arguments ─────────────────────────────────────────────────────────


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PushArguments(_Arguments):
    branch: Optional[StrictStr] = None
    message: Optional[StrictStr] = None
    ready_for_review: Optional[StrictBool] = None

    def to_command(self) -> PushCommand:
        return PushCommand(
            branch=self.branch or None,
            message=self.message or None,
            ready_for_review=self.ready_for_review,
        )


class ScanTasksArguments(_Arguments):
    project_number: Optional[Union[StrictStr, StrictInt]] = None
    filter_type: Optional[StrictStr] = None
    status: Optional[StrictStr] = None

    def to_command(self) -> ScanTasksCommand:
        number = self.project_number
        return ScanTasksCommand(
            project_number=str(number) if number not in (None, "") else None,
            filter_type=self.filter_type or None,
            status=self.status or None,
        )


class MergeArguments(_Arguments):
    branch: Optional[StrictStr] = None
    delete_branch: Optional[StrictBool] = None
    cleanup_work_folder: Optional[StrictBool] = None

    def to_command(self) -> MergeCommand:
        return MergeCommand(
            branch=self.branch or None,
            delete_branch=self.delete_branch,
            cleanup_work_folder=self.cleanup_work_folder,
        )


TOOL_ARGUMENTS = {
    TOOL_PUSH: PushArguments,
    TOOL_SCAN_TASKS: ScanTasksArguments,
    TOOL_MERGE: MergeArguments,
}

METHOD_TOOLS = {
    GITHUB_PUSH: TOOL_PUSH,
    GITHUB_SCAN_TASKS: TOOL_SCAN_TASKS,
    GITHUB_MERGE: TOOL_MERGE,
}


# ── Envelopes ──────────────────────────────────────────────────────────────


def success_response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}
