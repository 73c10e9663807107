"""Configuration for the GitHub Workflow MCP Server."""
import logging
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Load .env from project root (one level above github_workflow_mcp/)
# Uses Path(__file__) so it works regardless of cwd.
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE, override=False)


class WorkflowSettings(BaseSettings):
    """Settings for the GitHub Workflow MCP Server."""

    # GitHub
    github_token: str = Field(default="")
    github_owner: str = Field(
        default="",
        description="Repository owner; parsed from the origin remote when empty",
    )
    github_repo: str = Field(
        default="",
        description="Repository name; parsed from the origin remote when empty",
    )
    github_api_base: str = Field(default="https://api.github.com")
    github_project_number: str = Field(
        default="",
        description="Fallback GitHub Project number for task scans",
    )
    github_project_owner: str = Field(
        default="",
        description="Login owning the GitHub Project (defaults to the repo owner)",
    )
    github_merge_method: str = Field(default="merge", pattern="^(merge|squash|rebase)$")
    github_timeout: float = Field(default=30.0)

    # Working tree
    repo_path: str = Field(default=".", description="Path of the local git checkout")
    git_executable: str = Field(default="git")
    git_max_workers: int = Field(default=4, ge=1)
    default_main_branch: str = Field(default="main")
    tracking_document: str = Field(default="TODO.md")
    work_folder: str = Field(default="work")

    # Rate limiting
    rate_limit_requests_per_minute: int = Field(default=60, ge=1)
    rate_limit_max_clients: int = Field(default=10000, ge=1)

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8443)
    log_level: str = Field(default="INFO")
    log_file: str = Field(default="")

    class Config:
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token)


@lru_cache()
def get_settings() -> WorkflowSettings:
    """Return a cached settings instance."""
    return WorkflowSettings()


settings = get_settings()
