"""Repository overview: GitHub tree plus an AI architecture summary."""

import logging
from typing import List, Optional, Tuple

from artifex.core.services.analysis_service import limited_tree, tree_hash
from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import ChatMessage, RepositoryOverview, StructuredAIResponse
from artifex.infrastructure.cache.caching_service import create_cache_key
from artifex.infrastructure.github.github_client import GitHubClient
from artifex.infrastructure.resilience.executor import ResilientExecutor

logger = logging.getLogger(__name__)

OVERVIEW_TREE_LIMIT = 300

OVERVIEW_PROMPT = """You are a senior software architect reviewing a project.

Here is the file structure of the repository {owner}/{repo}:
{tree}

Describe the architecture of this project: its main components, how they
fit together and the likely technology stack. Keep it concise and technical."""


def parse_repo_slug(slug: str) -> Tuple[str, str]:
    """Splits 'owner/repo' (or a github.com URL) into (owner, repo)."""
    cleaned = slug.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    if "github.com/" in cleaned:
        cleaned = cleaned.split("github.com/", 1)[1]
    parts = [part for part in cleaned.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Expected OWNER/REPO, got '{slug}'.")
    return parts[0], parts[1]


class RepositoryService:
    """Fetches a repository's source tree and asks the model to summarise it."""

    def __init__(
        self,
        github_client: GitHubClient,
        ai_model: AIModel,
        executor: ResilientExecutor,
        cache_ttl: Optional[float] = None,
    ):
        self.github_client = github_client
        self.ai_model = ai_model
        self.executor = executor
        self.cache_ttl = cache_ttl

    async def describe_repository(self, owner: str, repo: str) -> RepositoryOverview:
        """Builds the overview for owner/repo.

        Raises:
            UpstreamError: GitHub or the model chain failed terminally.
        """
        files = await self.github_client.fetch_repo_tree(owner, repo)
        if not files:
            logger.info(f"No source files found in {owner}/{repo}; skipping summary.")
            return RepositoryOverview(owner=owner, repo=repo, files=files)

        prompt = OVERVIEW_PROMPT.format(owner=owner, repo=repo, tree=limited_tree(files, OVERVIEW_TREE_LIMIT))
        messages: List[ChatMessage] = [ChatMessage(role="user", content=prompt)]
        key = create_cache_key("overview", owner, repo, tree_hash(files))

        async def summarise_with(model: str) -> StructuredAIResponse:
            return await self.ai_model.send_messages(messages, model=model)

        response = await self.executor.run(key, self.ai_model.fallback_models, summarise_with, ttl=self.cache_ttl)
        return RepositoryOverview(
            owner=owner,
            repo=repo,
            files=files,
            summary=response.content,
            model_name=response.model_name,
        )
