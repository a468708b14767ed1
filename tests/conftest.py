import asyncio
from typing import List

import pytest
from typer.testing import CliRunner

from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.models.ai import StructuredAIResponse
from artifex.domain.models.common import RetryPolicy
from artifex.infrastructure.cache.caching_service import InMemoryCacheStore
from artifex.infrastructure.cache.coalescer import InFlightCoalescer
from artifex.infrastructure.config.settings import clear_test_config
from artifex.infrastructure.resilience.api_retry import ApiRetryService
from artifex.infrastructure.resilience.executor import ResilientExecutor
from artifex.infrastructure.resilience.fallback import FallbackOrchestrator
from artifex.infrastructure.resilience.rate_limit_state import RateLimitState


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that records delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


class ScriptedModel(AIModel):
    """AIModel double: per-model replies, where an Exception reply is raised."""

    provider_name = "OpenAI"

    def __init__(self, replies, models=("gpt-4o", "gpt-4o-mini")):
        self.replies = replies
        self.models = tuple(models)
        self.calls = []

    @property
    def fallback_models(self):
        return self.models

    async def send_messages(self, messages, model=None):
        target = model or self.models[0]
        self.calls.append((target, messages))
        reply = self.replies[target] if isinstance(self.replies, dict) else self.replies
        if isinstance(reply, Exception):
            raise reply
        return StructuredAIResponse(content=reply, model_name=target)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def fast_policy():
    """Three attempts with 100ms/200ms backoff."""
    return RetryPolicy(max_attempts=3, initial_delay_ms=100, backoff_multiplier=2.0)


@pytest.fixture
def rate_limit_state(clock):
    return RateLimitState(service="OpenAI", clock=clock)


@pytest.fixture
def retry_service(rate_limit_state, fast_policy, fake_sleep):
    return ApiRetryService(
        rate_limit_state=rate_limit_state,
        policy=fast_policy,
        service_name="OpenAI",
        timeout_s=None,
        sleep=fake_sleep,
    )


@pytest.fixture
def cache_store(clock):
    return InMemoryCacheStore(default_ttl=300, clock=clock)


@pytest.fixture
def executor(cache_store, retry_service):
    return ResilientExecutor(cache_store, InFlightCoalescer(), FallbackOrchestrator(retry_service))


@pytest.fixture(autouse=True)
def reset_test_config():
    """Keeps set_config_for_testing overrides from leaking between tests."""
    yield
    clear_test_config()


@pytest.fixture
def scripted_model():
    """Factory for ScriptedModel doubles."""
    return ScriptedModel
