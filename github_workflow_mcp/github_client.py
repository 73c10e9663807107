"""
GitHub API client – users, repositories, issues, pull requests and
Projects (v2) items.

REST calls go to `{api_base}/repos/...`; project items and the draft → ready
transition only exist in the GraphQL API and go to `{api_base}/graphql`.
Responses are simplified into plain dicts. Nothing is retried: a non-2xx answer
raises GitHubApiError (AuthenticationError for 401) exactly once.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import WorkflowSettings, settings as default_settings
from .errors import AuthenticationError, GitHubApiError

logger = logging.getLogger(__name__)

USER_AGENT = "github-workflow-mcp/1.0"
MAX_PROJECT_PAGES = 10

PROJECT_ITEMS_QUERY = """
query($login: String!, $number: Int!, $cursor: String) {
  repositoryOwner(login: $login) {
    ... on ProjectV2Owner {
      projectV2(number: $number) {
        title
        items(first: 100, after: $cursor) {
          pageInfo { hasNextPage endCursor }
          nodes {
            id
            type
            content {
              __typename
              ... on Issue {
                number title url state
                labels(first: 20) { nodes { name } }
              }
              ... on PullRequest {
                number title url state
                labels(first: 20) { nodes { name } }
              }
              ... on DraftIssue { title }
            }
            fieldValues(first: 20) {
              nodes {
                __typename
                ... on ProjectV2ItemFieldTextValue {
                  text
                  field { ... on ProjectV2FieldCommon { name } }
                }
                ... on ProjectV2ItemFieldSingleSelectValue {
                  name
                  field { ... on ProjectV2FieldCommon { name } }
                }
                ... on ProjectV2ItemFieldNumberValue {
                  number
                  field { ... on ProjectV2FieldCommon { name } }
                }
                ... on ProjectV2ItemFieldIterationValue {
                  title
                  field { ... on ProjectV2FieldCommon { name } }
                }
              }
            }
          }
        }
      }
    }
  }
}
"""

MARK_READY_MUTATION = """
mutation($id: ID!) {
  markPullRequestReadyForReview(input: {pullRequestId: $id}) {
    pullRequest { number isDraft }
  }
}
"""


# ── Simplifiers ────────────────────────────────────────────────────────────


def simplify_pull_request(pr: Dict[str, Any]) -> Dict[str, Any]:
    head = pr.get("head") or {}
    base = pr.get("base") or {}
    return {
        "number": pr.get("number"),
        "node_id": pr.get("node_id", ""),
        "title": pr.get("title", ""),
        "state": pr.get("state", ""),
        "draft": bool(pr.get("draft", False)),
        "url": pr.get("html_url", ""),
        "head": head.get("ref", ""),
        "head_sha": head.get("sha", ""),
        "base": base.get("ref", ""),
        "mergeable": pr.get("mergeable"),
        "author": (pr.get("user") or {}).get("login", ""),
    }


def simplify_issue(issue: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "number": issue.get("number"),
        "title": issue.get("title", ""),
        "state": issue.get("state", ""),
        "labels": [label.get("name", "") for label in issue.get("labels", [])],
        "assignee": (issue.get("assignee") or {}).get("login"),
        "author": (issue.get("user") or {}).get("login", ""),
        "url": issue.get("html_url", ""),
        "created_at": issue.get("created_at", ""),
        "updated_at": issue.get("updated_at", ""),
    }


def _field_value(node: Dict[str, Any]) -> Any:
    for key in ("text", "name", "number", "title"):
        if key in node and node[key] is not None:
            return node[key]
    return None


def parse_project_item(node: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one ProjectV2Item GraphQL node."""
    content = node.get("content") or {}
    fields: Dict[str, Any] = {}
    for value_node in (node.get("fieldValues") or {}).get("nodes") or []:
        if not value_node:
            continue
        field_name = (value_node.get("field") or {}).get("name")
        value = _field_value(value_node)
        if field_name and value is not None:
            fields[field_name] = value

    return {
        "id": node.get("id", ""),
        "type": (node.get("type") or content.get("__typename") or "").lower(),
        "number": content.get("number"),
        "title": content.get("title", ""),
        "url": content.get("url", ""),
        "state": content.get("state", ""),
        "labels": [
            label.get("name", "")
            for label in ((content.get("labels") or {}).get("nodes") or [])
            if label
        ],
        "fields": fields,
    }


# ── Client ─────────────────────────────────────────────────────────────────


class GitHubClient:
    """Async client for the GitHub REST and GraphQL APIs."""

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {self._token}",
            "User-Agent": USER_AGENT,
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Perform one request and return parsed JSON (None for 204)."""
        url = f"{self.api_base}{path}"
        logger.debug("GitHub %s %s", method, url)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.request(method, url, headers=self.headers, params=params, json=json)
            except httpx.HTTPError as exc:
                raise GitHubApiError(f"GitHub request failed: {exc}", status_code=0) from exc

        if resp.status_code == 401:
            raise AuthenticationError(
                "GitHub rejected the configured token",
                {"status_code": 401, "body": resp.text[:2000]},
            )
        if resp.status_code >= 400:
            logger.error("GitHub API error: %s %s -> %s", method, path, resp.status_code)
            raise GitHubApiError(
                f"GitHub API error {resp.status_code} on {method} {path}",
                status_code=resp.status_code,
                body=resp.text,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = await self._request("POST", "/graphql", json={"query": query, "variables": variables or {}})
        if not isinstance(payload, dict):
            raise GitHubApiError("GitHub GraphQL returned an invalid payload", status_code=200)
        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            raise GitHubApiError(
                f"GitHub GraphQL error: {first.get('message', 'unknown error')}",
                status_code=200,
                data={"errors": errors},
            )
        return payload.get("data") or {}

    # ── Users & repositories ──────────────────────────────────────────────

    async def get_user(self) -> Dict[str, Any]:
        raw = await self._request("GET", "/user")
        return {
            "id": raw.get("id"),
            "login": raw.get("login", ""),
            "name": raw.get("name"),
            "email": raw.get("email"),
            "avatar_url": raw.get("avatar_url", ""),
        }

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        raw = await self._request("GET", f"/repos/{owner}/{repo}")
        return {
            "id": raw.get("id"),
            "name": raw.get("name", ""),
            "full_name": raw.get("full_name", ""),
            "owner": (raw.get("owner") or {}).get("login", ""),
            "default_branch": raw.get("default_branch", ""),
            "clone_url": raw.get("clone_url", ""),
            "ssh_url": raw.get("ssh_url", ""),
        }

    # ── Issues ────────────────────────────────────────────────────────────

    async def list_issues(self, owner: str, repo: str, state: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"state": state} if state else None
        raw = await self._request("GET", f"/repos/{owner}/{repo}/issues", params=params)
        return [simplify_issue(issue) for issue in raw]

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title}
        if body is not None:
            payload["body"] = body
        if labels:
            payload["labels"] = labels
        raw = await self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        return simplify_issue(raw)

    # ── Pull requests ─────────────────────────────────────────────────────

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: Optional[str] = None,
        head: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if state:
            params["state"] = state
        if head:
            params["head"] = head
        raw = await self._request("GET", f"/repos/{owner}/{repo}/pulls", params=params or None)
        return [simplify_pull_request(pr) for pr in raw]

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        head: str,
        base: str,
        body: Optional[str] = None,
        draft: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title, "head": head, "base": base, "draft": draft}
        if body is not None:
            payload["body"] = body
        raw = await self._request("POST", f"/repos/{owner}/{repo}/pulls", json=payload)
        return simplify_pull_request(raw)

    async def get_pull_request(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        raw = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return simplify_pull_request(raw)

    async def find_pull_request_for_branch(self, owner: str, repo: str, branch: str) -> Optional[Dict[str, Any]]:
        """Open PR whose head is `owner:branch`, or None."""
        prs = await self.list_pull_requests(owner, repo, state="open", head=f"{owner}:{branch}")
        for pr in prs:
            if pr["head"] == branch:
                return pr
        return None

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        raw = await self._request("GET", f"/repos/{owner}/{repo}/commits/{ref}/status")
        return {
            "state": raw.get("state", ""),
            "total_count": raw.get("total_count", 0),
            "statuses": [
                {"context": s.get("context", ""), "state": s.get("state", "")}
                for s in raw.get("statuses", [])
            ],
        }

    async def get_check_runs(self, owner: str, repo: str, ref: str) -> List[Dict[str, Any]]:
        """Check runs (GitHub Actions and other apps) reported for a commit."""
        raw = await self._request(
            "GET", f"/repos/{owner}/{repo}/commits/{ref}/check-runs", params={"per_page": 100}
        ) or {}
        return [
            {
                "name": run.get("name", ""),
                "status": run.get("status", ""),
                "conclusion": run.get("conclusion"),
            }
            for run in raw.get("check_runs", [])
        ]

    async def mark_ready_for_review(self, node_id: str) -> bool:
        data = await self.graphql(MARK_READY_MUTATION, {"id": node_id})
        pr = ((data.get("markPullRequestReadyForReview") or {}).get("pullRequest") or {})
        return not pr.get("isDraft", True)

    async def merge_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        merge_method: str = "merge",
        commit_title: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"merge_method": merge_method}
        if commit_title:
            payload["commit_title"] = commit_title
        raw = await self._request("PUT", f"/repos/{owner}/{repo}/pulls/{number}/merge", json=payload) or {}
        return {
            "merged": bool(raw.get("merged", False)),
            "sha": raw.get("sha", ""),
            "message": raw.get("message", ""),
        }

    # ── Projects (v2) ─────────────────────────────────────────────────────

    async def get_project_items(self, owner_login: str, project_number: int) -> List[Dict[str, Any]]:
        """All items of a user or organization project, flattened."""
        items: List[Dict[str, Any]] = []
        cursor = None
        for _ in range(MAX_PROJECT_PAGES):
            data = await self.graphql(
                PROJECT_ITEMS_QUERY,
                {"login": owner_login, "number": project_number, "cursor": cursor},
            )
            project = ((data.get("repositoryOwner") or {}).get("projectV2"))
            if project is None:
                raise GitHubApiError(
                    f"GitHub Project {project_number} not found for {owner_login}",
                    status_code=404,
                )
            page = project.get("items") or {}
            items.extend(parse_project_item(node) for node in page.get("nodes") or [] if node)
            page_info = page.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        logger.info(f"Fetched {len(items)} items from project {owner_login}#{project_number}")
        return items


def get_github_client(config: Optional[WorkflowSettings] = None) -> GitHubClient:
    """Build a client from settings; raises AuthenticationError without a token."""
    config = config or default_settings
    if not config.github_token:
        raise AuthenticationError("No GitHub token available; set GITHUB_TOKEN")
    return GitHubClient(
        token=config.github_token,
        api_base=config.github_api_base,
        timeout=config.github_timeout,
    )
