import json
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
from typer.testing import CliRunner

from artifex import main
from artifex.domain.models.errors import GitHubApiError
from artifex.infrastructure.config.settings import set_config_for_testing
from artifex.infrastructure.github.github_client import GitHubClient

# Fixtures used from tests/conftest.py:
# runner: CliRunner
# scripted_model: factory for AIModel doubles

pytestmark = pytest.mark.integration

REVIEW_REPLY = json.dumps({"summary": "Tidy module.", "overallScore": 90, "issues": [], "strengths": ["Short"]})
TREE = {"tree": [{"path": "app/main.py", "type": "blob", "size": 10}, {"path": "README.md", "type": "blob"}]}


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch):
    """Leaves pytest's log capture in place instead of reconfiguring the root logger."""
    monkeypatch.setattr(main, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def mock_console_display(monkeypatch):
    display = MagicMock()
    monkeypatch.setattr(main, "ConsoleDisplay", lambda: display)
    return display


@pytest.fixture
def github_requests(monkeypatch):
    """Routes the real GitHubClient through an in-memory transport."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/repos/octo/demo/git/trees/main":
            return httpx.Response(200, json=TREE)
        return httpx.Response(404, json={"message": "Not Found"})

    def build_client(**kwargs):
        return GitHubClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)

    monkeypatch.setattr(main, "GitHubClient", build_client)
    return seen


@pytest.fixture
def wired_app(monkeypatch, scripted_model, mock_console_display, github_requests, tmp_path):
    """Real composition root with a scripted AI provider and no network access."""
    model = scripted_model(REVIEW_REPLY)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-integration")
    monkeypatch.setitem(main.PROVIDERS, "openai", lambda api_key: model)
    monkeypatch.setattr(main, "_dependencies", {})
    set_config_for_testing({
        "ai.default_provider": "openai",
        "retry.initial_delay_ms": 0,
        "request.timeout_seconds": 5,
        "cache.directory": str(tmp_path / "artifex-cache"),
    })
    return model


def test_review_command_flow(runner: CliRunner, wired_app, mock_console_display, tmp_path: Path):
    source = tmp_path / "calc.py"
    source.write_text("def add(a, b):\n    return a + b\n")

    result = runner.invoke(main.app, ["review", str(source)])

    assert result.exit_code == 0, f"CLI command failed: {result.output}"
    assert len(wired_app.calls) == 1
    assert "return a + b" in wired_app.calls[0][1][0]["content"]
    review = mock_console_display.display_review.call_args.args[0]
    assert review.summary == "Tidy module."
    mock_console_display.display_error.assert_not_called()


def test_overview_command_flow(runner: CliRunner, wired_app, mock_console_display, github_requests):
    result = runner.invoke(main.app, ["overview", "octo/demo"])

    assert result.exit_code == 0, f"CLI command failed: {result.output}"
    assert github_requests == ["/repos/octo/demo/git/trees/main"]
    files = mock_console_display.display_repo_files.call_args.args[0]
    assert [f.path for f in files] == ["app/main.py"]
    mock_console_display.display_output.assert_called_once()


def test_overview_of_missing_repository(runner: CliRunner, wired_app, mock_console_display, github_requests):
    result = runner.invoke(main.app, ["overview", "octo/ghost"])

    assert result.exit_code == 0
    assert github_requests == ["/repos/octo/ghost/git/trees/main", "/repos/octo/ghost/git/trees/master"]
    error = mock_console_display.display_error.call_args.args[0]
    assert error.code == "MODEL_404"
    assert wired_app.calls == []


def test_status_command_flow(runner: CliRunner, wired_app, mock_console_display):
    result = runner.invoke(main.app, ["status"])

    assert result.exit_code == 0
    assert mock_console_display.display_rate_limit.call_args.args[0].is_limited is False


def test_clear_cache_command_flow(runner: CliRunner, wired_app, mock_console_display):
    result = runner.invoke(main.app, ["clear-cache"])

    assert result.exit_code == 0
    mock_console_display.display_info.assert_called_once_with("Response cache cleared successfully.")


def test_unknown_provider_exits_with_error(runner: CliRunner, wired_app):
    result = runner.invoke(main.app, ["review", "whatever.py", "--provider", "mystery"])

    assert result.exit_code == 1
    assert "Unknown AI provider" in result.output


def test_review_without_any_provider(runner: CliRunner, monkeypatch, mock_console_display, github_requests, tmp_path):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setattr(main, "_dependencies", {})
    set_config_for_testing({
        "OPENAI_API_KEY": None, "GROQ_API_KEY": None, "openai.api_key": None, "groq.api_key": None,
        "cache.directory": None,
    })
    source = tmp_path / "calc.py"
    source.write_text("x = 1\n")

    result = runner.invoke(main.app, ["review", str(source)])

    assert result.exit_code == 0
    assert mock_console_display.display_error.call_args.args[0].code == "CONFIG"


def start_new_process(monkeypatch):
    """Drops the wired dependencies, as a fresh CLI invocation would start without them."""
    monkeypatch.setattr(main, "_dependencies", {})


def test_cooldown_from_one_run_is_honoured_by_the_next(
    runner: CliRunner, wired_app, monkeypatch, scripted_model, mock_console_display, tmp_path: Path
):
    limited = scripted_model(GitHubApiError(429, "Too many requests", {"retry-after": "120"}))
    monkeypatch.setitem(main.PROVIDERS, "openai", lambda api_key: limited)
    source = tmp_path / "calc.py"
    source.write_text("x = 1\n")

    first = runner.invoke(main.app, ["review", str(source)])
    calls_in_first_run = len(limited.calls)

    start_new_process(monkeypatch)
    status = runner.invoke(main.app, ["status"])
    snapshot = mock_console_display.display_rate_limit.call_args.args[0]

    start_new_process(monkeypatch)
    second = runner.invoke(main.app, ["review", str(source)])

    assert first.exit_code == status.exit_code == second.exit_code == 0
    assert calls_in_first_run >= 1
    assert snapshot.is_limited
    assert snapshot.service == "OpenAI"
    assert 0 < snapshot.remaining_seconds <= 120
    assert len(limited.calls) == calls_in_first_run


def test_responses_persist_until_cache_is_cleared(runner: CliRunner, wired_app, monkeypatch, tmp_path: Path):
    source = tmp_path / "calc.py"
    source.write_text("def add(a, b):\n    return a + b\n")

    for command in (["review", str(source)], ["review", str(source)], ["clear-cache"], ["review", str(source)]):
        start_new_process(monkeypatch)
        result = runner.invoke(main.app, command)
        assert result.exit_code == 0, f"CLI command failed: {result.output}"

    # Second review came from the disk cache; the one after clear-cache did not.
    assert len(wired_app.calls) == 2
