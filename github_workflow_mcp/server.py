"""
MCP stdio server – the same workflows registered with the official SDK.

Resources (read-only context for LLMs):
    github://workflow/status  – branch, pending changes and open PR
    github://projects/tasks   – items of the configured GitHub Project

Tools (callable actions):
    github_push        – commit (optional), push, report/promote the PR
    github_scan_tasks  – list project tasks bucketed by priority
    github_merge       – push, check and merge the PR, return to main
"""
import json
import logging
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import WorkflowSettings, settings as default_settings
from .errors import McpServerError
from .protocol import (
    RESOURCE_PROJECT_TASKS,
    RESOURCE_WORKFLOW_STATUS,
    TOOL_MERGE,
    TOOL_PUSH,
    TOOL_SCAN_TASKS,
    MergeCommand,
    PushCommand,
    ScanTasksCommand,
    WorkflowCommand,
)
from .workflows import WorkflowEngine, build_engine

logger = logging.getLogger(__name__)


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2)


def create_mcp_server(
    config: Optional[WorkflowSettings] = None,
    engine: Optional[WorkflowEngine] = None,
) -> FastMCP:
    config = config or default_settings
    if engine is None:
        engine = build_engine(config)

    mcp = FastMCP(
        "GitHub Workflow Server",
        instructions=(
            "MCP server that pushes feature branches, scans GitHub Project tasks "
            "and merges pull requests for the local git checkout."
        ),
    )

    async def _run(command: WorkflowCommand) -> str:
        try:
            return _dump(await engine.execute(command))
        except McpServerError as exc:
            # FastMCP reports raised exceptions as tool errors
            raise RuntimeError(_dump(exc.to_error())) from exc

    # ═══════════════════════════════════════════════════════════════════════
    #  RESOURCES
    # ═══════════════════════════════════════════════════════════════════════

    @mcp.resource(RESOURCE_WORKFLOW_STATUS, mime_type="application/json")
    async def resource_workflow_status() -> str:
        """Current GitHub workflow status and active tasks."""
        return _dump(await engine.get_status())

    @mcp.resource(RESOURCE_PROJECT_TASKS, mime_type="application/json")
    async def resource_project_tasks() -> str:
        """GitHub Project tasks with current status."""
        return _dump(await engine.get_tasks())

    # ═══════════════════════════════════════════════════════════════════════
    #  TOOLS
    # ═══════════════════════════════════════════════════════════════════════

    @mcp.tool(name=TOOL_PUSH)
    async def github_push(
        branch: Optional[str] = None,
        message: Optional[str] = None,
        ready_for_review: Optional[bool] = None,
    ) -> str:
        """
        Intelligent git push with PR management.

        Args:
            branch: Branch to push (defaults to current branch).
            message: Commit message used to commit pending changes first.
            ready_for_review: Mark the branch's draft PR as ready for review.
        """
        return await _run(PushCommand(branch=branch, message=message, ready_for_review=ready_for_review))

    @mcp.tool(name=TOOL_SCAN_TASKS)
    async def github_scan_tasks(
        project_number: Optional[str] = None,
        filter_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> str:
        """
        Scan a GitHub Project for tasks, organized by priority.

        Args:
            project_number: Project number (auto-detected from TODO.md when omitted).
            filter_type: Keep only tasks of this type (bug, feature, ...).
            status: Keep only tasks in this status (In Progress, To Do, ...).
        """
        return await _run(ScanTasksCommand(project_number=project_number, filter_type=filter_type, status=status))

    @mcp.tool(name=TOOL_MERGE)
    async def github_merge(
        branch: Optional[str] = None,
        delete_branch: Optional[bool] = None,
        cleanup_work_folder: Optional[bool] = None,
    ) -> str:
        """
        Merge the branch's pull request and return to the main branch.

        Args:
            branch: Branch to merge (defaults to current branch).
            delete_branch: Delete the local branch afterwards (default true).
            cleanup_work_folder: Empty the scratch work folder afterwards.
        """
        return await _run(MergeCommand(branch=branch, delete_branch=delete_branch, cleanup_work_folder=cleanup_work_folder))

    return mcp
