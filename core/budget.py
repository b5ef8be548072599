"""Retry bookkeeping for one build: a shared budget plus a controller per phase."""

import time


class BuildAborted(Exception):
    """Fatal pipeline outcome. Carries the user-facing reason."""


class BuildBudget:
    """Global iteration counter and wall-clock deadline shared by all phases.

    `clock` returns seconds and is injectable for tests.
    """

    def __init__(self, max_iterations, timeout_ms, clock=time.monotonic):
        self.max_iterations = max_iterations
        self.timeout_ms = timeout_ms
        self.iteration = 0
        self._clock = clock
        self._started = clock()

    @property
    def elapsed_ms(self):
        return int((self._clock() - self._started) * 1000)

    def timed_out(self):
        return self.elapsed_ms >= self.timeout_ms

    def check_deadline(self):
        if self.timed_out():
            raise BuildAborted("Build timeout")

    def check(self):
        """Guard run before every fix-and-retry step."""
        if self.iteration >= self.max_iterations:
            raise BuildAborted("Max iterations reached")
        self.check_deadline()

    def spend(self):
        self.iteration += 1


class RetryController:
    """Attempt counter for one phase, composed with the shared budget."""

    def __init__(self, phase, max_attempts, budget):
        self.phase = phase
        self.max_attempts = max_attempts
        self.attempts = 0
        self.budget = budget

    @property
    def exhausted(self):
        return self.attempts >= self.max_attempts

    def begin_attempt(self):
        """Raise BuildAborted if the shared budget is spent; otherwise allow a fix."""
        self.budget.check()

    def record_attempt(self):
        self.attempts += 1
        self.budget.spend()
