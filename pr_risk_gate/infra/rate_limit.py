"""
固定窗口限流（进程内）。

- 按客户端地址计数，窗口 60s
- 计数表由 `build_app()` 创建的实例显式持有，不是模块级全局变量
- 每次读改写都在锁内完成；不同 key 之间不需要协调
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pr_risk_gate.errors import RateLimitExceededError

DEFAULT_WINDOW_SECONDS = 60.0
_PRUNE_THRESHOLD = 10_000


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def hit(self, identity: str) -> None:
        """记一次请求；超过上限抛 `RateLimitExceededError`。"""
        if not identity:
            raise ValueError("identity must be non-empty")
        now = self._clock()
        with self._lock:
            window = self._windows.get(identity)
            if window is None or now > window.reset_at:
                if len(self._windows) >= _PRUNE_THRESHOLD:
                    self._prune(now)
                self._windows[identity] = _Window(count=1, reset_at=now + self._window_seconds)
                return
            window.count += 1
            count = window.count
        if count > self._max_requests:
            raise RateLimitExceededError(f"Rate limit exceeded for {identity}: {count}/{self._max_requests}")

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
