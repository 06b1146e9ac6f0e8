from __future__ import annotations

import pytest

from pr_risk_gate.errors import RateLimitExceededError
from pr_risk_gate.infra.rate_limit import FixedWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_121st_request_in_window_is_rejected() -> None:
    limiter = FixedWindowRateLimiter(max_requests=120, clock=FakeClock())
    for _ in range(120):
        limiter.hit("1.2.3.4")
    with pytest.raises(RateLimitExceededError):
        limiter.hit("1.2.3.4")


def test_clients_are_counted_separately() -> None:
    limiter = FixedWindowRateLimiter(max_requests=1, clock=FakeClock())
    limiter.hit("a")
    limiter.hit("b")
    with pytest.raises(RateLimitExceededError):
        limiter.hit("a")


def test_window_resets_after_expiry() -> None:
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=1, clock=clock)
    limiter.hit("a")
    clock.now += 61
    limiter.hit("a")


def test_rejects_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(max_requests=1).hit("")
