"""Tests for core.budget."""

import pytest

from core.budget import BuildAborted, BuildBudget, RetryController


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_elapsed_uses_injected_clock():
    clock = FakeClock()
    budget = BuildBudget(10, 5000, clock=clock)
    clock.now += 1.5
    assert budget.elapsed_ms == 1500


def test_check_passes_within_budget():
    budget = BuildBudget(2, 5000, clock=FakeClock())
    budget.check()
    budget.spend()
    budget.check()
    assert budget.iteration == 1


def test_check_raises_when_iterations_spent():
    budget = BuildBudget(1, 5000, clock=FakeClock())
    budget.spend()
    with pytest.raises(BuildAborted, match="Max iterations reached"):
        budget.check()


def test_check_raises_on_timeout():
    clock = FakeClock()
    budget = BuildBudget(10, 1000, clock=clock)
    clock.now += 1.0
    assert budget.timed_out()
    with pytest.raises(BuildAborted, match="Build timeout"):
        budget.check()


def test_zero_timeout_is_already_expired():
    budget = BuildBudget(10, 0, clock=FakeClock())
    with pytest.raises(BuildAborted, match="Build timeout"):
        budget.check_deadline()


def test_deadline_ignores_iterations():
    budget = BuildBudget(0, 5000, clock=FakeClock())
    budget.check_deadline()


def test_retry_controller_counts_attempts():
    budget = BuildBudget(10, 5000, clock=FakeClock())
    retry = RetryController("compile", 2, budget)

    assert not retry.exhausted
    retry.begin_attempt()
    retry.record_attempt()
    retry.begin_attempt()
    retry.record_attempt()

    assert retry.exhausted
    assert retry.attempts == 2
    assert budget.iteration == 2


def test_retry_controllers_share_budget():
    budget = BuildBudget(3, 5000, clock=FakeClock())
    security = RetryController("security", 3, budget)
    tests = RetryController("test", 5, budget)

    for _ in range(3):
        security.begin_attempt()
        security.record_attempt()

    assert not tests.exhausted
    with pytest.raises(BuildAborted, match="Max iterations reached"):
        tests.begin_attempt()
