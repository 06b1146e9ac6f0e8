"""
Resilient Store：给每一次存储读写加上超时 + 有界重试 + 指数退避。

约定：
- 每次 attempt 有硬超时（`anyio.fail_after`），超时视为一次可重试的失败
- 只重试白名单里的瞬时错误（序列化失败、死锁、连接层失败）；其他错误立即抛出
- 写路径（`save_assessment`）最终失败要抛给调用方
- 读/聚合路径最终失败降级为空结果（优先保证读可用）
- 重试只会带来有界的额外延迟（attempts × backoff），不负责端到端取消
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

import anyio

from pr_risk_gate.errors import StorageError
from pr_risk_gate.storage.models import AssessmentRow
from pr_risk_gate.storage.models import FindingCount
from pr_risk_gate.storage.models import NewAssessment
from pr_risk_gate.storage.models import SeverityCount
from pr_risk_gate.storage.models import TrendPoint

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AssessmentBackend(Protocol):
    """存储后端接口（同步；Resilient Store 负责把调用挪到线程池）。"""

    enabled: bool

    def save_assessment(self, assessment: NewAssessment) -> None: ...

    def recent(self, limit: int, repo: str | None) -> list[AssessmentRow]: ...

    def trends(self, repo: str | None, days: int) -> list[TrendPoint]: ...

    def severity_distribution(self, days: int, repo: str | None) -> list[SeverityCount]: ...

    def top_findings(self, days: int, repo: str | None, limit: int) -> list[FindingCount]: ...

    def ping(self) -> None: ...


class NoopAssessmentBackend:
    """未配置 DATABASE_URL 时使用：写入丢弃，读返回空。"""

    enabled = False

    def save_assessment(self, assessment: NewAssessment) -> None:
        logger.debug(f"Persistence disabled, dropping assessment for {assessment.repo}#{assessment.pr_number}")

    def recent(self, limit: int, repo: str | None) -> list[AssessmentRow]:
        return []

    def trends(self, repo: str | None, days: int) -> list[TrendPoint]:
        return []

    def severity_distribution(self, days: int, repo: str | None) -> list[SeverityCount]:
        return []

    def top_findings(self, days: int, repo: str | None, limit: int) -> list[FindingCount]:
        return []

    def ping(self) -> None:
        return None


@dataclass(frozen=True)
class RetryPolicy:
    timeout_seconds: float = 5.0
    attempts: int = 3
    base_backoff_seconds: float = 0.1

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.attempts <= 0:
            raise ValueError("attempts must be > 0")
        if self.base_backoff_seconds < 0:
            raise ValueError("base_backoff_seconds must be >= 0")

    def backoff(self, attempt: int) -> float:
        """第 `attempt` 次失败后的等待时间（attempt 从 1 开始）。"""
        return self.base_backoff_seconds * (2 ** (attempt - 1))


class ResilientStore:
    def __init__(
        self,
        backend: AssessmentBackend,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._backend = backend
        self._policy = policy
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self._backend.enabled

    async def _run(self, operation: str, func: Callable[[], T]) -> T:
        attempts = self._policy.attempts
        for attempt in range(1, attempts + 1):
            try:
                with anyio.fail_after(self._policy.timeout_seconds):
                    return await anyio.to_thread.run_sync(func, abandon_on_cancel=True)
            except TimeoutError:
                error = StorageError(f"{operation} timed out after {self._policy.timeout_seconds}s", retriable=True)
            except StorageError as exc:
                if not exc.retriable:
                    logger.error(f"Storage {operation} failed (non-retriable): {exc}")
                    raise
                error = exc

            if attempt == attempts:
                logger.error(f"Storage {operation} failed after {attempts} attempt(s): {error}")
                raise error

            delay = self._policy.backoff(attempt)
            logger.warning(f"Storage {operation} attempt {attempt}/{attempts} failed, retrying in {delay:.3f}s: {error}")
            await self._sleep(delay)

        raise AssertionError("unreachable")

    async def _read(self, operation: str, func: Callable[[], T], default: T) -> T:
        try:
            return await self._run(operation, func)
        except StorageError as exc:
            logger.warning(f"Storage {operation} degraded to empty result: {exc}")
            return default

    async def save_assessment(self, assessment: NewAssessment) -> None:
        """写路径：最终失败抛 `StorageError`（由调用方决定请求是否失败）。"""
        await self._run("save_assessment", functools.partial(self._backend.save_assessment, assessment))

    async def recent(self, limit: int, repo: str | None) -> list[AssessmentRow]:
        return await self._read("recent", functools.partial(self._backend.recent, limit, repo), [])

    async def trends(self, repo: str | None, days: int) -> list[TrendPoint]:
        return await self._read("trends", functools.partial(self._backend.trends, repo, days), [])

    async def severity_distribution(self, days: int, repo: str | None) -> list[SeverityCount]:
        return await self._read(
            "severity_distribution",
            functools.partial(self._backend.severity_distribution, days, repo),
            [],
        )

    async def top_findings(self, days: int, repo: str | None, limit: int) -> list[FindingCount]:
        return await self._read(
            "top_findings",
            functools.partial(self._backend.top_findings, days, repo, limit),
            [],
        )

    async def ping(self) -> bool:
        """readiness 探针：存储可达返回 True。"""
        try:
            await self._run("ping", self._backend.ping)
        except StorageError:
            return False
        return True
