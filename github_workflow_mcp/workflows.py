"""
Workflow engine – the push / scan-tasks / merge state machines.

Each command reads the current branch and working-tree status fresh from the
git workspace, checks branch safety, then runs its git and GitHub steps in
order. Steps are never retried and never rolled back: when one fails, the
error carries the command, the failing stage, the branch and the steps that
already completed, so the caller knows exactly what was left behind.

Concurrent push/merge calls share one working tree and are not serialized.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from .config import WorkflowSettings, settings as default_settings
from .errors import AuthenticationError, McpServerError, WorkflowError, WorkflowValidationError
from .git_workspace import GitWorkspace
from .github_client import GitHubClient, get_github_client
from .protocol import MergeCommand, PushCommand, ScanTasksCommand, WorkflowCommand
from .tasks import filter_tasks, organize_tasks_by_priority, read_project_number

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Check run conclusions that block a merge
FAILING_CHECK_CONCLUSIONS = ("failure", "timed_out", "cancelled", "action_required", "startup_failure")

_REMOTE_PATTERN = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")


def parse_github_remote(url: str) -> Optional[Tuple[str, str]]:
    """(owner, repo) from an https, ssh or scp-style GitHub remote URL."""
    match = _REMOTE_PATTERN.search(url.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowRun:
    """Step log of one command execution."""

    def __init__(self, command: str, branch: Optional[str] = None):
        self.command = command
        self.branch = branch
        self.steps: List[str] = []

    def context(self, stage: str) -> Dict[str, Any]:
        return {
            "command": self.command,
            "stage": stage,
            "branch": self.branch,
            "completed_steps": list(self.steps),
        }

    async def step(self, name: str, awaitable: Awaitable[T]) -> T:
        try:
            result = await awaitable
        except McpServerError as exc:
            logger.error("%s failed at %s: %s", self.command, name, exc.message)
            raise exc.add_context(**self.context(name))
        self.steps.append(name)
        return result

    def fail(self, stage: str, message: str, **data: Any) -> WorkflowError:
        return WorkflowError(message, {**data, **self.context(stage)})


class WorkflowEngine:
    """Runs workflow commands against a git workspace and GitHub."""

    def __init__(
        self,
        git: GitWorkspace,
        github_factory: Optional[Callable[[], GitHubClient]] = None,
        config: Optional[WorkflowSettings] = None,
    ):
        self.git = git
        self.config = config or default_settings
        self._github_factory = github_factory or (lambda: get_github_client(self.config))

    # ── Entry point ────────────────────────────────────────────────────────

    async def execute(self, command: WorkflowCommand) -> Dict[str, Any]:
        if isinstance(command, PushCommand):
            return await self.push(command)
        if isinstance(command, ScanTasksCommand):
            return await self.scan_tasks(command)
        if isinstance(command, MergeCommand):
            return await self.merge(command)
        raise TypeError(f"Unsupported workflow command: {command!r}")

    # ── Helpers ────────────────────────────────────────────────────────────

    def _github(self) -> GitHubClient:
        return self._github_factory()

    def _optional_github(self) -> Optional[GitHubClient]:
        try:
            return self._github_factory()
        except AuthenticationError as exc:
            logger.info("GitHub lookups skipped: %s", exc.message)
            return None

    async def _repository(self) -> Tuple[str, str]:
        if self.config.github_owner and self.config.github_repo:
            return self.config.github_owner, self.config.github_repo

        url = await self.git.remote_url()
        parsed = parse_github_remote(url)
        if parsed is None:
            raise WorkflowValidationError(
                "Cannot determine the GitHub repository from the origin remote",
                {"remote_url": url},
            )
        return self.config.github_owner or parsed[0], self.config.github_repo or parsed[1]

    async def _project_owner(self) -> str:
        if self.config.github_project_owner:
            return self.config.github_project_owner
        owner, _ = await self._repository()
        return owner

    async def _resolve_project_number(self, explicit: Optional[str]) -> str:
        number = explicit
        if not number:
            document = Path(self.config.repo_path) / self.config.tracking_document
            number = await asyncio.to_thread(read_project_number, document)
            if number:
                logger.info(f"Detected project number {number} in {document.name}")
        if not number:
            number = self.config.github_project_number or None

        if not number:
            raise WorkflowValidationError(
                "No GitHub Project number found. Please specify project_number "
                f"or add it to {self.config.tracking_document}",
                {"command": "scan_tasks", "stage": "resolve_project_number"},
            )
        number = str(number).strip()
        if not number.isdigit():
            raise WorkflowValidationError(
                f"Invalid GitHub Project number: {number!r}",
                {"command": "scan_tasks", "stage": "resolve_project_number"},
            )
        return number

    # ── Push ───────────────────────────────────────────────────────────────

    async def push(self, command: PushCommand) -> Dict[str, Any]:
        logger.info("Executing push workflow")
        run = WorkflowRun("push", command.branch)

        branch = command.branch or await run.step("resolve_branch", self.git.current_branch())
        run.branch = branch
        main_branch = await self.git.main_branch()

        if branch == main_branch:
            logger.warning("Refusing to push main branch %s without confirmation", main_branch)
            return {
                "status": "warning",
                "message": f"You're on the main branch ({main_branch}). Are you sure you want to push?",
                "branch": branch,
                "main_branch": main_branch,
                "requires_confirmation": True,
            }

        if command.message:
            if await run.step("check_pending", self.git.status()):
                logger.info("Committing changes with message: %s", command.message)
                await run.step("commit", self.git.commit_all(command.message))
            else:
                logger.info("Nothing to commit; pushing existing commits")

        pending = await run.step("check_status", self.git.status())
        if pending:
            return {
                "status": "error",
                "message": "Uncommitted changes detected. Please commit or provide a commit message.",
                "branch": branch,
                "uncommitted_changes": pending,
                "completed_steps": list(run.steps),
            }

        await run.step("push", self.git.push(branch))

        result: Dict[str, Any] = {
            "status": "success",
            "message": f"Pushed to feature branch: {branch}",
            "branch": branch,
        }

        pr = None
        github = self._optional_github()
        if github is not None:
            try:
                owner, repo = await self._repository()
            except WorkflowError as exc:
                logger.warning("Pull request lookup skipped: %s", exc.message)
            else:
                pr = await run.step(
                    "find_pull_request", github.find_pull_request_for_branch(owner, repo, branch)
                )

        if pr is not None:
            logger.info(f"Found existing PR: #{pr['number']}")
            summary = {
                "number": pr["number"],
                "url": pr["url"],
                "title": pr["title"],
                "draft": pr["draft"],
            }
            if command.ready_for_review and pr["draft"]:
                ready = await run.step("mark_ready_for_review", github.mark_ready_for_review(pr["node_id"]))
                summary["ready_for_review"] = ready
                if ready:
                    summary["draft"] = False
                    result["message"] = "Pushed and marked PR as ready for review!"
            result["pull_request"] = summary
        else:
            result["suggestion"] = "Consider creating a pull request for this branch"

        result["completed_steps"] = list(run.steps)
        return result

    # ── Scan tasks ─────────────────────────────────────────────────────────

    async def scan_tasks(self, command: ScanTasksCommand) -> Dict[str, Any]:
        logger.info("Executing scan tasks workflow")
        run = WorkflowRun("scan_tasks")

        project_number = await self._resolve_project_number(command.project_number)
        github = self._github()
        owner = await run.step("resolve_project_owner", self._project_owner())
        items = await run.step(
            "fetch_project_items", github.get_project_items(owner, int(project_number))
        )

        if command.filter_type:
            logger.info("Filtering tasks by type: %s", command.filter_type)
        if command.status:
            logger.info("Filtering tasks by status: %s", command.status)
        selected = filter_tasks(items, command.filter_type, command.status)

        return {
            "status": "success",
            "project_number": project_number,
            "filters": {"type": command.filter_type, "status": command.status},
            "tasks": organize_tasks_by_priority(selected),
            "message": "GitHub Project tasks available",
            "instructions": "Select a task number to start working on it",
        }

    # ── Merge ──────────────────────────────────────────────────────────────

    async def _pre_merge_checks(
        self, github: GitHubClient, owner: str, repo: str, pr: Dict[str, Any]
    ) -> Dict[str, Any]:
        logger.info("Running final checks for PR #%s", pr["number"])
        detail = await github.get_pull_request(owner, repo, pr["number"])
        ref = detail["head_sha"] or detail["head"]
        status = await github.get_combined_status(owner, repo, ref)
        check_runs = await github.get_check_runs(owner, repo, ref)

        problems = []
        if detail["draft"]:
            problems.append("pull request is still a draft")
        if detail["mergeable"] is False:
            problems.append("pull request has merge conflicts")
        if status["state"] in ("failure", "error"):
            problems.append(f"commit status is {status['state']}")
        for check in check_runs:
            if check["conclusion"] in FAILING_CHECK_CONCLUSIONS:
                problems.append(f"check run {check['name']} concluded {check['conclusion']}")

        checks = {
            "mergeable": detail["mergeable"],
            "status": status["state"] or "none",
            "statuses": status["statuses"],
            "check_runs": check_runs,
        }
        if problems:
            raise WorkflowError(
                f"Pre-merge checks failed for PR #{pr['number']}: " + "; ".join(problems),
                {"problems": problems, "checks": checks},
            )
        return checks

    async def _cleanup_work_folder(self) -> bool:
        try:
            return await self.git.clean_directory(self.config.work_folder)
        except (OSError, ValueError) as exc:
            logger.warning("Work folder cleanup failed: %s", exc)
            return False

    async def merge(self, command: MergeCommand) -> Dict[str, Any]:
        logger.info("Executing merge workflow")
        run = WorkflowRun("merge", command.branch)

        branch = command.branch or await run.step("resolve_branch", self.git.current_branch())
        run.branch = branch
        main_branch = await self.git.main_branch()

        if branch == main_branch:
            raise WorkflowValidationError(
                "Already on main branch. Switch to feature branch first.",
                {"main_branch": main_branch, **run.context("validate_branch")},
            )

        github = self._github()
        owner, repo = await run.step("resolve_repository", self._repository())

        pending = await run.step("check_status", self.git.status())
        if pending:
            logger.info("Committing final changes")
            await run.step("commit", self.git.commit_all(f"Final changes for {branch}"))

        await run.step("push", self.git.push(branch))

        pr = await run.step("find_pull_request", github.find_pull_request_for_branch(owner, repo, branch))
        if pr is None:
            raise run.fail("find_pull_request", f"No open pull request found for branch {branch}")

        checks = await run.step("pre_merge_checks", self._pre_merge_checks(github, owner, repo, pr))

        logger.info("Merging PR #%s", pr["number"])
        merge = await run.step(
            "merge_pull_request",
            github.merge_pull_request(owner, repo, pr["number"], self.config.github_merge_method),
        )
        if not merge["merged"]:
            raise run.fail(
                "merge_pull_request",
                f"GitHub did not merge PR #{pr['number']}: {merge['message'] or 'no reason given'}",
            )

        await run.step("checkout_main", self.git.checkout(main_branch))
        await run.step("pull_main", self.git.pull(main_branch))

        work_folder_cleaned = False
        if command.cleanup_work_folder:
            work_folder_cleaned = await self._cleanup_work_folder()
            if work_folder_cleaned:
                run.steps.append("cleanup_work_folder")

        branch_deleted = False
        if command.delete_branch is None or command.delete_branch:
            branch_deleted = await self.git.delete_local_branch(branch)
            if branch_deleted:
                run.steps.append("delete_branch")

        return {
            "status": "success",
            "message": f"PR #{pr['number']} merged into {main_branch}",
            "merged_pr": {
                "number": pr["number"],
                "url": pr["url"],
                "title": pr["title"],
                "sha": merge["sha"],
            },
            "checks": checks,
            "current_branch": main_branch,
            "branch_deleted": branch_deleted,
            "work_folder_cleaned": work_folder_cleaned,
            "completed_steps": list(run.steps),
            "timestamp": _now(),
        }

    # ── Read-only queries ──────────────────────────────────────────────────

    async def get_status(self) -> Dict[str, Any]:
        branch = await self.git.current_branch()
        main_branch = await self.git.main_branch()
        pending = await self.git.status()

        pr = None
        github = self._optional_github()
        if github is not None:
            try:
                owner, repo = await self._repository()
                pr = await github.find_pull_request_for_branch(owner, repo, branch)
            except McpServerError as exc:
                logger.warning("Pull request lookup for %s failed: %s", branch, exc.message)

        return {
            "current_branch": branch,
            "main_branch": main_branch,
            "has_uncommitted_changes": bool(pending),
            "git_status": pending,
            "pull_request": pr,
            "timestamp": _now(),
        }

    async def get_tasks(self) -> Dict[str, Any]:
        project_number = await self._resolve_project_number(None)
        github = self._github()
        owner = await self._project_owner()
        tasks = await github.get_project_items(owner, int(project_number))
        return {
            "project_number": project_number,
            "tasks": tasks,
            "total_count": len(tasks),
            "timestamp": _now(),
        }


def build_engine(config: Optional[WorkflowSettings] = None) -> WorkflowEngine:
    config = config or default_settings
    return WorkflowEngine(GitWorkspace.from_settings(config), config=config)
