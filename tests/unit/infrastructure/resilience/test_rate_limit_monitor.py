import asyncio

import pytest

from artifex.domain.models.errors import GitHubApiError
from artifex.infrastructure.resilience.rate_limit_monitor import RateLimitMonitor
from artifex.infrastructure.resilience.rate_limit_state import RateLimitState


@pytest.fixture
def github_state(clock):
    return RateLimitState(service="GitHub", clock=clock)


@pytest.fixture
def monitor(rate_limit_state, github_state, clock, fake_sleep):
    return RateLimitMonitor(states=(rate_limit_state, github_state), clock=clock, sleep=fake_sleep)


def test_idle_monitor_reports_cleared(monitor):
    assert not monitor.is_limited()
    assert monitor.remaining_seconds() == 0
    assert monitor.check_before_call() is False


def test_shared_limit_is_visible_to_monitor(monitor, rate_limit_state):
    rate_limit_state.set_limit("OpenAI", 30)

    snapshot = monitor.status()
    assert snapshot.is_limited
    assert snapshot.service == "OpenAI"
    assert snapshot.remaining_seconds == 30


def test_longest_cooldown_wins(monitor, rate_limit_state, github_state):
    rate_limit_state.set_limit("OpenAI", 20)
    github_state.set_limit("GitHub", 50)
    monitor.set_rate_limit("Groq", 35)

    snapshot = monitor.status()
    assert snapshot.service == "GitHub"
    assert snapshot.remaining_seconds == 50


def test_local_view_wins_when_longer(monitor, rate_limit_state):
    rate_limit_state.set_limit("OpenAI", 10)
    monitor.set_rate_limit("Groq", 40)

    assert monitor.status().service == "Groq"
    assert monitor.remaining_seconds() == 40


def test_dismiss_clears_local_view_but_not_shared_state(monitor, rate_limit_state):
    rate_limit_state.set_limit("OpenAI", 25)
    monitor.set_rate_limit("OpenAI", 60)

    monitor.dismiss()

    assert monitor.remaining_seconds() == 25
    assert rate_limit_state.is_limited()


def test_handle_api_error_records_limits_only(monitor):
    assert monitor.handle_api_error(GitHubApiError(500, "Internal Server Error")) is False
    assert not monitor.is_limited()

    assert monitor.handle_api_error(GitHubApiError(429, "Too many requests", {"retry-after": "12"})) is True
    assert monitor.remaining_seconds() == 12


def test_subscribers_receive_updates_until_unsubscribed(monitor):
    received = []
    unsubscribe = monitor.subscribe(received.append)

    monitor.set_rate_limit("OpenAI", 5)
    unsubscribe()
    monitor.dismiss()

    assert len(received) == 1
    assert received[0].remaining_seconds == 5


def test_broken_subscriber_does_not_stop_others(monitor):
    received = []

    def broken(snapshot):
        raise RuntimeError("render failed")

    monitor.subscribe(broken)
    monitor.subscribe(received.append)
    monitor.set_rate_limit("OpenAI", 5)

    assert len(received) == 1


@pytest.mark.asyncio
async def test_countdown_ticks_down_to_cleared(monitor, rate_limit_state, fake_sleep):
    rate_limit_state.set_limit("OpenAI", 30)
    received = []
    monitor.subscribe(received.append)

    await monitor.run_countdown()

    assert [s.remaining_seconds for s in received] == list(range(30, 0, -1)) + [0]
    assert received[-1].is_limited is False
    assert fake_sleep.delays == [1.0] * 30
    assert not rate_limit_state.is_limited()


@pytest.mark.asyncio
async def test_countdown_on_cleared_state_publishes_once(monitor):
    received = []
    monitor.subscribe(received.append)

    await monitor.run_countdown()

    assert len(received) == 1
    assert not received[0].is_limited


@pytest.mark.asyncio
async def test_check_before_call_starts_background_countdown(monitor, rate_limit_state):
    rate_limit_state.set_limit("OpenAI", 3)

    assert monitor.check_before_call() is True
    task = monitor.start()
    assert task is not None
    await asyncio.wait_for(task, timeout=1)
    assert not monitor.is_limited()


def test_set_rate_limit_without_loop_does_not_start_countdown(monitor):
    monitor.set_rate_limit("OpenAI", 5)

    assert monitor.start() is None
    monitor.stop()
