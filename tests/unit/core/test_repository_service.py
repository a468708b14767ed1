from unittest.mock import AsyncMock, MagicMock

import pytest

from artifex.core.services.repository_service import RepositoryService, parse_repo_slug
from artifex.domain.models.ai import RepoFile
from artifex.domain.models.errors import ErrorClassification, ErrorKind, UpstreamError
from artifex.infrastructure.github.github_client import GitHubClient

FILES = [RepoFile(path="src/main.py"), RepoFile(path="src/api/routes.py"), RepoFile(path="pyproject.toml")]


@pytest.fixture
def mock_github_client():
    client = MagicMock(spec=GitHubClient)
    client.fetch_repo_tree = AsyncMock(return_value=FILES)
    return client


@pytest.mark.parametrize(
    "slug, expected",
    [
        ("octo/demo", ("octo", "demo")),
        ("https://github.com/octo/demo", ("octo", "demo")),
        ("https://github.com/octo/demo.git", ("octo", "demo")),
        ("github.com/octo/demo/tree/main/src", ("octo", "demo")),
        (" octo/demo/ ", ("octo", "demo")),
    ],
)
def test_parse_repo_slug(slug, expected):
    assert parse_repo_slug(slug) == expected


@pytest.mark.parametrize("slug", ["", "octo", "https://github.com/octo"])
def test_parse_repo_slug_rejects_incomplete(slug):
    with pytest.raises(ValueError, match="OWNER/REPO"):
        parse_repo_slug(slug)


@pytest.mark.asyncio
async def test_describe_repository(mock_github_client, scripted_model, executor):
    model = scripted_model("A FastAPI service with a thin routing layer.")
    service = RepositoryService(mock_github_client, model, executor)

    overview = await service.describe_repository("octo", "demo")

    mock_github_client.fetch_repo_tree.assert_awaited_once_with("octo", "demo")
    assert overview.files == FILES
    assert overview.summary == "A FastAPI service with a thin routing layer."
    assert overview.model_name == "gpt-4o"
    prompt = model.calls[0][1][0]["content"]
    assert "octo/demo" in prompt
    assert "src/api/routes.py" in prompt


@pytest.mark.asyncio
async def test_summary_is_cached_per_tree(mock_github_client, scripted_model, executor):
    model = scripted_model("summary")
    service = RepositoryService(mock_github_client, model, executor)

    await service.describe_repository("octo", "demo")
    await service.describe_repository("octo", "demo")

    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_empty_repository_skips_model(mock_github_client, scripted_model, executor):
    mock_github_client.fetch_repo_tree.return_value = []
    model = scripted_model("unused")
    service = RepositoryService(mock_github_client, model, executor)

    overview = await service.describe_repository("octo", "empty")

    assert overview.files == []
    assert overview.summary == ""
    assert model.calls == []


@pytest.mark.asyncio
async def test_github_failure_propagates(mock_github_client, scripted_model, executor):
    failure = UpstreamError(ErrorClassification(kind=ErrorKind.TARGET_UNAVAILABLE, service="GitHub"))
    mock_github_client.fetch_repo_tree.side_effect = failure
    model = scripted_model("unused")
    service = RepositoryService(mock_github_client, model, executor)

    with pytest.raises(UpstreamError) as exc_info:
        await service.describe_repository("octo", "ghost")

    assert exc_info.value is failure
    assert model.calls == []
