"""
出站 HTTP 重试（GitHub API 调用共用）。

- 可重试：408 / 429 / 5xx 响应，以及传输层异常（连接失败、超时等）
- 退避：`base_ms * 2 ** (attempt - 1)`
- 最后一次 attempt 直接返回响应（由调用方判断状态码），或重新抛出传输异常
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import anyio
import httpx

logger = logging.getLogger(__name__)


def is_retriable_status(status_code: int) -> bool:
    return status_code in (408, 429) or 500 <= status_code <= 599


async def request_with_retry(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    attempts: int,
    base_ms: int,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    **kwargs: object,
) -> httpx.Response:
    if attempts <= 0:
        raise ValueError("attempts must be > 0")

    for attempt in range(1, attempts + 1):
        try:
            response = await http_client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt == attempts:
                logger.error(f"HTTP {method} {url} failed after {attempts} attempt(s): {exc}")
                raise
            logger.warning(f"HTTP {method} {url} transport error on attempt {attempt}/{attempts}: {exc}")
        else:
            if not is_retriable_status(response.status_code) or attempt == attempts:
                return response
            logger.warning(f"HTTP {method} {url} returned {response.status_code} on attempt {attempt}/{attempts}")

        await sleep(base_ms * (2 ** (attempt - 1)) / 1000)

    raise AssertionError("unreachable")
