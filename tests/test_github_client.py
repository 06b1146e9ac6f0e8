from __future__ import annotations

from collections.abc import Callable

import anyio
import httpx
import pytest

from pr_risk_gate.errors import ConfigError
from pr_risk_gate.errors import UpstreamError
from pr_risk_gate.github.client import GitHubClient
from pr_risk_gate.risk.models import ChangedFile

Handler = Callable[[httpx.Request], httpx.Response]


def _list_files(handler: Handler, token: str | None = "token") -> list[ChangedFile]:
    async def main() -> list[ChangedFile]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = GitHubClient(
                api_base_url="https://api.github.test/",
                token=token,
                http_client=http_client,
                retry_attempts=1,
                retry_base_ms=1,
            )
            return await client.list_pull_request_files(owner="o", repo="r", pull_number=1)

    return anyio.run(main)


def test_missing_token_raises_config_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("must not call GitHub without a token")

    with pytest.raises(ConfigError):
        _list_files(handler, token=None)


def test_single_short_page() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"filename": "a.ts", "status": "modified", "patch": "+a"}])

    files = _list_files(handler)
    assert files == [ChangedFile(filename="a.ts", status="modified", patch="+a")]
    assert len(seen) == 1
    assert seen[0].url.path == "/repos/o/r/pulls/1/files"
    assert seen[0].url.params["per_page"] == "100"
    assert seen[0].headers["Authorization"] == "Bearer token"


def test_pages_until_short_page_preserving_order() -> None:
    pages = {
        "1": [{"filename": f"f-{i}.ts", "status": "modified", "patch": "+line"} for i in range(100)],
        "2": [{"filename": "final.ts", "status": "added", "patch": "+x"}],
    }
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        seen.append(page)
        return httpx.Response(200, json=pages[page])

    files = _list_files(handler)
    assert len(files) == 101
    assert files[0].filename == "f-0.ts"
    assert files[100].filename == "final.ts"
    assert seen == ["1", "2"]


def test_full_last_page_triggers_one_more_request() -> None:
    full = [{"filename": f"f-{i}.ts"} for i in range(100)]
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.params["page"])
        return httpx.Response(200, json=full if request.url.params["page"] == "1" else [])

    files = _list_files(handler)
    assert len(files) == 100
    assert files[0].patch is None
    assert seen == ["1", "2"]


def test_error_on_any_page_aborts_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json=[{"filename": f"f-{i}.ts"} for i in range(100)])
        return httpx.Response(404, text="Not Found")

    with pytest.raises(UpstreamError) as exc_info:
        _list_files(handler)
    assert exc_info.value.status_code == 404
    assert exc_info.value.body == "Not Found"



def test_non_json_page_raises_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(UpstreamError) as exc_info:
        _list_files(handler)
    assert exc_info.value.status_code == 200
    assert exc_info.value.body.startswith("Invalid PR files JSON")


def test_item_without_filename_raises_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"status": "modified"}])

    with pytest.raises(UpstreamError) as exc_info:
        _list_files(handler)
    assert exc_info.value.body.startswith("Invalid PR file item")

def test_create_issue_comment_raises_on_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/o/r/issues/3/comments"
        return httpx.Response(500, text="boom")

    async def main() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = GitHubClient(
                api_base_url="https://api.github.test",
                token="token",
                http_client=http_client,
                retry_attempts=1,
            )
            await client.create_issue_comment(owner="o", repo="r", pr_number=3, body="x")

    with pytest.raises(UpstreamError):
        anyio.run(main)
