"""Async client for the GitHub REST API.

Repository trees are fetched through the ResilientExecutor, so repeated or
concurrent requests for the same repository share one upstream call and
the default-branch guess ("main", then "master") runs as a fallback chain.
Non-success responses raise GitHubApiError carrying the status code and
headers, which the error classifier reads directly.
"""

import functools
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx

from artifex.domain.models.ai import KeyValidationResult, RepoFile
from artifex.domain.models.errors import GitHubApiError
from artifex.infrastructure.cache.caching_service import create_cache_key
from artifex.infrastructure.config.settings import DEFAULT_REPO_BRANCHES
from artifex.infrastructure.resilience.executor import ResilientExecutor

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
DEFAULT_HTTP_TIMEOUT = 30.0

SOURCE_FILE_RE = re.compile(
    r"\.(js|jsx|ts|tsx|py|go|rs|java|c|cpp|h|hpp|cs|php|rb|swift|kt|dart|json|yaml|yml|toml|xml|html|css)$",
    re.IGNORECASE,
)
EXCLUDED_PATH_PARTS = ("node_modules", "dist/", "build/")

RATE_LIMIT_MESSAGE = "GitHub API rate limit exceeded. Please try again later (usually resets in an hour)."
NOT_FOUND_MESSAGE = (
    "Repository not found. It might be private, non-existent, or using a non-standard default branch."
)


def is_source_file(item: Dict[str, Any]) -> bool:
    """True for tree blobs worth showing: known source extensions, no vendored or hidden paths."""
    path = str(item.get("path") or "")
    return (
        item.get("type") == "blob"
        and bool(SOURCE_FILE_RE.search(path))
        and not any(part in path for part in EXCLUDED_PATH_PARTS)
        and not path.startswith(".")
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("message") or "")
    return ""


def error_for_response(response: httpx.Response) -> GitHubApiError:
    """Builds the GitHubApiError for a non-success response."""
    status = response.status_code
    upstream_message = _error_message(response)
    headers = dict(response.headers)

    rate_limited = status == 429 or (
        status == 403
        and (response.headers.get("x-ratelimit-remaining") == "0" or "rate limit" in upstream_message.lower())
    )
    if rate_limited:
        return GitHubApiError(status, RATE_LIMIT_MESSAGE, headers)
    if status == 404:
        return GitHubApiError(status, f"{NOT_FOUND_MESSAGE} ({upstream_message or 'Not Found'})", headers)
    if status == 401:
        return GitHubApiError(status, f"GitHub rejected the token: {upstream_message or 'Bad credentials'}", headers)
    if status == 403:
        return GitHubApiError(status, f"GitHub API access forbidden: {upstream_message or 'Forbidden'}", headers)
    return GitHubApiError(status, f"GitHub API error (status {status}): {upstream_message or response.reason_phrase}", headers)


class GitHubClient:
    """Fetches repository data from GitHub with caching, coalescing and branch fallback."""

    provider_name = "GitHub"

    def __init__(
        self,
        executor: ResilientExecutor,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        branches: Sequence[str] = DEFAULT_REPO_BRANCHES,
        cache_ttl: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the GitHub client.

        Args:
            executor: Executor bound to GitHub's own rate-limit state.
            token: Personal access token; anonymous access when None.
            base_url: REST API root.
            branches: Branch names tried, in order, for repository trees.
            cache_ttl: Cache lifetime for fetched trees (store default if None).
            http_client: Pre-built httpx client, mainly for tests.
        """
        self.executor = executor
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.branches = tuple(branches)
        self.cache_ttl = cache_ttl
        self._http_client = http_client
        logger.info(f"GitHubClient initialized ({'authenticated' if token else 'anonymous'}).")

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        effective_token = token or self.token
        if effective_token:
            headers["Authorization"] = f"Bearer {effective_token}"
        return headers

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(DEFAULT_HTTP_TIMEOUT),
                follow_redirects=True,
            )
        return self._http_client

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        client = await self._get_http_client()
        response = await client.get(f"{self.base_url}{path}", params=params, headers=self._headers())
        if response.is_success:
            return response.json()
        error = error_for_response(response)
        logger.warning(f"GitHub request {path} failed with status {response.status_code}: {error}")
        raise error

    async def _fetch_branch_tree(self, owner: str, repo: str, branch: str) -> List[RepoFile]:
        data = await self._get_json(f"/repos/{owner}/{repo}/git/trees/{branch}", params={"recursive": "1"})
        if data.get("truncated"):
            logger.warning(f"Tree for {owner}/{repo}@{branch} is too large and was truncated by the GitHub API.")
        files = [
            RepoFile(path=item["path"], size=item.get("size"), sha=item.get("sha"))
            for item in data.get("tree") or []
            if is_source_file(item)
        ]
        logger.debug(f"Fetched {len(files)} source files from {owner}/{repo}@{branch}")
        return files

    async def fetch_repo_tree(self, owner: str, repo: str) -> List[RepoFile]:
        """Lists the source files of a repository's default branch.

        Args:
            owner: Repository owner (user or organisation).
            repo: Repository name.

        Returns:
            Source files of the first branch in the chain that exists.

        Raises:
            UpstreamError: Classified failure (missing repository, rate limit, ...).
        """
        key = create_cache_key("repo-tree", owner, repo)
        return await self.executor.run(
            key,
            self.branches,
            functools.partial(self._fetch_branch_tree, owner, repo),
            ttl=self.cache_ttl,
        )

    async def validate_token(self, token: str) -> KeyValidationResult:
        """Checks a personal access token against the /user endpoint."""
        client = await self._get_http_client()
        try:
            response = await client.get(f"{self.base_url}/user", headers=self._headers(token))
        except httpx.HTTPError as e:
            logger.warning(f"GitHub token check failed: {e}")
            return KeyValidationResult(valid=False, error=f"Could not verify token: {e or 'Network error'}")

        if response.is_success:
            return KeyValidationResult(valid=True)
        if response.status_code == 401:
            return KeyValidationResult(valid=False, error="This token is invalid or expired. Please generate a new one.")
        if response.status_code == 403:
            return KeyValidationResult(valid=False, error="This token does not have the required permissions.")
        return KeyValidationResult(valid=False, error=f"Token verification failed (status {response.status_code}).")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
