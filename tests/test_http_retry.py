from __future__ import annotations

import anyio
import httpx
import pytest

from pr_risk_gate.infra.http_retry import request_with_retry


async def _no_sleep(_: float) -> None:
    return None


def _run(handler, attempts: int = 3) -> tuple[httpx.Response, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request, len(seen))

    async def main() -> httpx.Response:
        async with httpx.AsyncClient(transport=httpx.MockTransport(record)) as client:
            return await request_with_retry(
                client, "GET", "https://example.com", attempts=attempts, base_ms=1, sleep=_no_sleep
            )

    return anyio.run(main), seen


def test_retries_retriable_statuses_until_success() -> None:
    statuses = {1: 500, 2: 429, 3: 200}
    response, seen = _run(lambda request, n: httpx.Response(statuses[n]))
    assert response.status_code == 200
    assert len(seen) == 3


def test_does_not_retry_non_retriable_status() -> None:
    response, seen = _run(lambda request, n: httpx.Response(404))
    assert response.status_code == 404
    assert len(seen) == 1


def test_returns_last_retriable_response_when_attempts_exhausted() -> None:
    response, seen = _run(lambda request, n: httpx.Response(503), attempts=2)
    assert response.status_code == 503
    assert len(seen) == 2


def test_raises_after_repeated_transport_errors() -> None:
    def fail(request: httpx.Request, n: int) -> httpx.Response:
        raise httpx.ConnectError("network down", request=request)

    with pytest.raises(httpx.ConnectError):
        _run(fail)
