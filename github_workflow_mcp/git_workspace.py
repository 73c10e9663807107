"""
Git workspace adapter – thin wrappers around the `git` executable.

Every operation is a single synchronous subprocess call that either succeeds
or raises GitCommandError with the captured stderr. The public methods are
coroutines: the subprocess runs on a dedicated, bounded thread pool so a slow
git call never blocks the event loop.
"""
import asyncio
import logging
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Callable, List, Optional

from .config import WorkflowSettings, settings as default_settings
from .errors import GitCommandError

logger = logging.getLogger(__name__)


class GitWorkspace:
    """Local working tree operated on by the workflows."""

    def __init__(
        self,
        repo_path: str = ".",
        git_executable: str = "git",
        default_main_branch: str = "main",
        max_workers: int = 4,
    ):
        self.repo_path = Path(repo_path).resolve()
        self.git_executable = git_executable
        self.default_main_branch = default_main_branch
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="git")

    @classmethod
    def from_settings(cls, config: Optional[WorkflowSettings] = None) -> "GitWorkspace":
        config = config or default_settings
        return cls(
            repo_path=config.repo_path,
            git_executable=config.git_executable,
            default_main_branch=config.default_main_branch,
            max_workers=config.git_max_workers,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ── Blocking layer ─────────────────────────────────────────────────────

    def _run_git(self, *args: str) -> str:
        """Run `git <args>` in the working tree and return stdout."""
        command = " ".join(args)
        logger.debug("git %s", command)
        try:
            proc = subprocess.run(
                [self.git_executable, *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise GitCommandError(command, -1, str(exc)) from exc

        if proc.returncode != 0:
            raise GitCommandError(command, proc.returncode, proc.stderr, proc.stdout)
        return proc.stdout

    async def _offload(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    async def _git(self, *args: str) -> str:
        return await self._offload(self._run_git, *args)

    # ── Queries ────────────────────────────────────────────────────────────

    async def current_branch(self) -> str:
        branch = (await self._git("branch", "--show-current")).strip()
        if not branch:
            raise GitCommandError("branch --show-current", 0, "HEAD is detached; no current branch")
        return branch

    async def main_branch(self) -> str:
        """Remote HEAD branch of origin, or the configured default on any failure."""
        try:
            output = await self._git("remote", "show", "origin")
        except GitCommandError as exc:
            logger.warning(
                "Could not inspect origin (%s); assuming main branch '%s'",
                exc.output or exc.message, self.default_main_branch,
            )
            return self.default_main_branch

        for line in output.splitlines():
            if "HEAD branch:" in line:
                branch = line.split(":", 1)[1].strip()
                if branch and branch != "(unknown)":
                    return branch
        return self.default_main_branch

    async def status(self) -> List[str]:
        """Porcelain status lines; an empty list means the tree is clean."""
        output = await self._git("status", "--porcelain")
        return [line for line in output.splitlines() if line.strip()]

    async def remote_url(self, remote: str = "origin") -> str:
        return (await self._git("remote", "get-url", remote)).strip()

    # ── Mutations ──────────────────────────────────────────────────────────

    async def commit_all(self, message: str) -> None:
        await self._git("add", ".")
        await self._git("commit", "-m", message)
        logger.info("Committed pending changes: %s", message)

    async def push(self, branch: str) -> None:
        await self._git("push", "origin", branch)
        logger.info("Pushed %s to origin", branch)

    async def pull(self, branch: str) -> None:
        await self._git("pull", "origin", branch)

    async def checkout(self, branch: str) -> None:
        await self._git("checkout", branch)

    async def delete_local_branch(self, branch: str) -> bool:
        """Delete a merged local branch. Failures are logged, never raised."""
        try:
            await self._git("branch", "-d", branch)
        except GitCommandError as exc:
            logger.warning("Failed to delete branch %s: %s", branch, exc.output or exc.message)
            return False
        return True

    async def clean_directory(self, relative_path: str) -> bool:
        """Remove everything inside a folder of the working tree, keeping the folder."""
        target = (self.repo_path / relative_path).resolve()
        if target == self.repo_path or self.repo_path not in target.parents:
            raise ValueError(f"Refusing to clean {target}: outside the working tree")
        if not target.is_dir():
            return False
        await self._offload(_empty_directory, target)
        logger.info("Cleaned work folder %s", target)
        return True


def _empty_directory(path: Path) -> None:
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
