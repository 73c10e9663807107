"""Shared fixtures: in-memory git workspace and GitHub client doubles."""
from typing import Any, Dict, List, Optional

import pytest

from github_workflow_mcp.config import WorkflowSettings
from github_workflow_mcp.errors import AuthenticationError, GitCommandError
from github_workflow_mcp.workflows import WorkflowEngine


class FakeGitWorkspace:
    """Records every git operation instead of running git."""

    def __init__(self, branch: str = "feature/x", main: str = "main", pending: Optional[List[str]] = None):
        self.branch = branch
        self.main = main
        self.pending = list(pending or [])
        self.remote = "git@github.com:octo/demo.git"
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, GitCommandError] = {}
        self.cleaned: List[str] = []
        self.shut_down = False

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    @property
    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in ("commit_all", "push", "pull", "checkout", "delete_local_branch")]

    async def current_branch(self) -> str:
        self._record("current_branch")
        return self.branch

    async def main_branch(self) -> str:
        return self.main

    async def status(self) -> List[str]:
        self._record("status")
        return list(self.pending)

    async def remote_url(self, remote: str = "origin") -> str:
        return self.remote

    async def commit_all(self, message: str) -> None:
        self._record("commit_all", message)
        if not self.pending:
            raise GitCommandError(f"commit -m {message}", 1, "", "nothing to commit, working tree clean")
        self.pending = []

    async def push(self, branch: str) -> None:
        self._record("push", branch)

    async def pull(self, branch: str) -> None:
        self._record("pull", branch)

    async def checkout(self, branch: str) -> None:
        self._record("checkout", branch)
        self.branch = branch

    async def delete_local_branch(self, branch: str) -> bool:
        self._record("delete_local_branch", branch)
        return True

    async def clean_directory(self, relative_path: str) -> bool:
        self._record("clean_directory", relative_path)
        self.cleaned.append(relative_path)
        return True

    def shutdown(self) -> None:
        self.shut_down = True


def make_pull_request(number: int = 42, branch: str = "feature/x", draft: bool = False) -> Dict[str, Any]:
    return {
        "number": number,
        "node_id": f"PR_node{number}",
        "title": f"Work on {branch}",
        "state": "open",
        "draft": draft,
        "url": f"https://github.com/octo/demo/pull/{number}",
        "head": branch,
        "head_sha": "abc123",
        "base": "main",
        "mergeable": True,
        "author": "octocat",
    }


class FakeGitHubClient:
    """Answers the calls the workflows make, recording each of them."""

    def __init__(self):
        self.pull_request: Optional[Dict[str, Any]] = None
        self.combined_state = "success"
        self.check_runs: List[Dict[str, Any]] = [{"name": "build", "status": "completed", "conclusion": "success"}]
        self.merge_result = {"merged": True, "sha": "def456", "message": "Pull Request successfully merged"}
        self.project_items: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []

    async def find_pull_request_for_branch(self, owner: str, repo: str, branch: str):
        self.calls.append(("find_pull_request_for_branch", owner, repo, branch))
        return dict(self.pull_request) if self.pull_request else None

    async def get_pull_request(self, owner: str, repo: str, number: int):
        self.calls.append(("get_pull_request", owner, repo, number))
        return dict(self.pull_request)

    async def get_combined_status(self, owner: str, repo: str, ref: str):
        self.calls.append(("get_combined_status", owner, repo, ref))
        return {"state": self.combined_state, "total_count": 1, "statuses": [{"context": "ci", "state": self.combined_state}]}

    async def get_check_runs(self, owner: str, repo: str, ref: str):
        self.calls.append(("get_check_runs", owner, repo, ref))
        return [dict(run) for run in self.check_runs]

    async def mark_ready_for_review(self, node_id: str) -> bool:
        self.calls.append(("mark_ready_for_review", node_id))
        return True

    async def merge_pull_request(self, owner: str, repo: str, number: int, merge_method: str = "merge", commit_title=None):
        self.calls.append(("merge_pull_request", owner, repo, number, merge_method))
        return dict(self.merge_result)

    async def get_project_items(self, owner_login: str, project_number: int):
        self.calls.append(("get_project_items", owner_login, project_number))
        return list(self.project_items)


@pytest.fixture
def settings(tmp_path):
    return WorkflowSettings(
        github_token="t",
        github_owner="octo",
        github_repo="demo",
        github_project_number="",
        github_project_owner="",
        repo_path=str(tmp_path),
        rate_limit_requests_per_minute=60,
    )


@pytest.fixture
def git():
    return FakeGitWorkspace()


@pytest.fixture
def github():
    return FakeGitHubClient()


@pytest.fixture
def engine(git, github, settings):
    return WorkflowEngine(git, github_factory=lambda: github, config=settings)


@pytest.fixture
def unauthenticated_engine(git, settings):
    def no_token():
        raise AuthenticationError("No GitHub token available; set GITHUB_TOKEN")

    return WorkflowEngine(git, github_factory=no_token, config=settings)
