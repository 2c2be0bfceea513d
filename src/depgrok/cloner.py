"""
Fetches every repository of a GitHub organisation into a local directory.

Repositories are listed through the GitHub REST API and shallow-cloned with
the git client over SSH, ready to be searched.
"""

import asyncio
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from httpx import HTTPStatusError, RequestError

from .cli_config import CloneConfig
from .error_handling import (
    CloneError,
    ErrorCategory,
    get_error_reporter,
    log_network_error,
    sanitize_message,
)
from .structured_logging import get_clone_logger


@dataclass(frozen=True)
class Repository:
    """A repository listed by the GitHub API."""

    name: str
    ssh_url: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        try:
            return cls(
                name=data["name"],
                ssh_url=data["ssh_url"],
            )
        except (KeyError, TypeError) as e:
            raise CloneError(f"Unexpected repository payload: missing {e}") from e


@dataclass
class CloneSummary:
    """Outcome of cloning a list of repositories."""

    cloned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    duration_ms: int = 0


class GitHubClient:
    """
    Minimal GitHub API client for listing organisation repositories.

    Uses the async context manager pattern for httpx.AsyncClient resource
    management.
    """

    def __init__(
        self,
        token: str,
        config: Optional[CloneConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not token:
            raise CloneError("A GitHub token is required")
        self.config = config or CloneConfig()
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self.config.user_agent,
        }

    async def __aenter__(self) -> "GitHubClient":
        self.client = httpx.AsyncClient(
            base_url=self.config.api_url,
            timeout=self.config.timeout_seconds,
            headers=self._headers,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def list_org_repos(self, org: str) -> List[Repository]:
        """
        List every repository of ``org``, one API page at a time.

        Raises:
            CloneError: on network failures or non-success responses
        """
        if self.client is None:
            raise CloneError("HTTP client not initialized - use within async context manager")

        logger = get_clone_logger()
        repos: List[Repository] = []
        page = 1
        while True:
            url = f"/orgs/{org}/repos"
            try:
                response = await self.client.get(url, params={"page": page})
                response.raise_for_status()
                payload = response.json()
            except HTTPStatusError as e:
                log_network_error(
                    f"GitHub API returned {e.response.status_code}",
                    "cloner",
                    "list_org_repos",
                    url=f"{self.config.api_url}{url}",
                    status_code=e.response.status_code,
                )
                raise CloneError(
                    f"GitHub API error listing repos for {org}: HTTP {e.response.status_code}"
                ) from e
            except RequestError as e:
                log_network_error(
                    "Error making request to GitHub",
                    "cloner",
                    "list_org_repos",
                    url=f"{self.config.api_url}{url}",
                    cause=e,
                )
                raise CloneError(f"Error making request to GitHub: {sanitize_message(str(e))}") from e
            except ValueError as e:
                raise CloneError("GitHub API returned a non-JSON response") from e

            if not isinstance(payload, list):
                raise CloneError("GitHub API returned an unexpected response")
            if not payload:
                break

            repos.extend(Repository.from_api(item) for item in payload)
            logger.debug("repos_page_listed", org=org, page=page, count=len(payload))
            page += 1

        logger.info("repos_listed", org=org, total_repos=len(repos))
        return repos


ProgressCallback = Callable[[Repository, str], None]


class RepositoryCloner:
    """Shallow-clones repositories into a target directory with git."""

    def __init__(self, config: Optional[CloneConfig] = None, git_executable: str = "git"):
        self.config = config or CloneConfig()
        self.git_executable = git_executable

    async def clone_all(
        self,
        repos: List[Repository],
        target_dir: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CloneSummary:
        """
        Clone ``repos`` one after the other into ``target_dir``.

        Raises:
            CloneError: when the target is missing or a clone fails
        """
        target = Path(target_dir)
        if not target.is_dir():
            raise CloneError(f"Clone directory does not exist: {target_dir}")

        logger = get_clone_logger()
        summary = CloneSummary()
        start_time = time.monotonic()
        logger.info("clone_started", target_dir=str(target), total_repos=len(repos))

        for repo in repos:
            if self.config.skip_existing and (target / repo.name).exists():
                summary.skipped.append(repo.name)
                if on_progress:
                    on_progress(repo, "skipped")
                continue

            if on_progress:
                on_progress(repo, "cloning")
            await self.clone(repo, target)
            summary.cloned.append(repo.name)
            logger.info("repo_cloned", repo=repo.name)

        summary.duration_ms = int((time.monotonic() - start_time) * 1000)
        return summary

    async def clone(self, repo: Repository, target: Path) -> None:
        command = [
            self.git_executable,
            "clone",
            repo.ssh_url,
            "--depth",
            str(self.config.clone_depth),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(target),
            )
            _, stderr_data = await process.communicate()
        except OSError as e:
            get_error_reporter().error(
                ErrorCategory.VCS,
                f"Could not run git: {e}",
                "cloner",
                "clone",
                cause=e,
                hints=["Check that git is installed and on PATH"],
            )
            raise CloneError(f"Could not run git: {e}") from e

        if process.returncode != 0:
            stderr = stderr_data.decode("utf-8", errors="replace").strip() if stderr_data else ""
            get_error_reporter().error(
                ErrorCategory.VCS,
                f"git clone failed for {repo.name}",
                "cloner",
                "clone",
                details={"repo": repo.name, "returncode": process.returncode, "stderr": stderr},
                hints=["Check SSH access to the organisation"],
            )
            raise CloneError(f"git clone failed for {repo.name}: {stderr or process.returncode}")


async def clone_organisation(
    org: str,
    token: str,
    target_dir: str,
    config: Optional[CloneConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CloneSummary:
    """List and clone every repository of ``org`` into ``target_dir``."""
    async with GitHubClient(token, config) as client:
        repos = await client.list_org_repos(org)
    return await RepositoryCloner(config).clone_all(repos, target_dir, on_progress)
