"""
GitHub API 客户端（外部系统连接器）。

约定：
- 这里只做 HTTP 调用 + 重试 + 错误处理 + schema 校验，不做业务决策
- 出错直接抛错（不要吞），便于定位与告警
"""

from __future__ import annotations

import httpx
from pydantic import ValidationError as PydanticValidationError

from pr_risk_gate.errors import ConfigError
from pr_risk_gate.errors import UpstreamError
from pr_risk_gate.github.schemas import GitHubPullRequestFile
from pr_risk_gate.infra.http_retry import request_with_retry
from pr_risk_gate.risk.models import ChangedFile

FILES_PER_PAGE = 100


class GitHubClient:
    """最小 GitHub API client（list PR files + create issue comment）。"""

    def __init__(
        self,
        api_base_url: str,
        token: str | None,
        http_client: httpx.AsyncClient,
        retry_attempts: int = 3,
        retry_base_ms: int = 150,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token
        self._http_client = http_client
        self._retry_attempts = retry_attempts
        self._retry_base_ms = retry_base_ms

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise ConfigError("GITHUB_TOKEN is required for GitHub API calls")
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def list_pull_request_files(self, owner: str, repo: str, pull_number: int) -> list[ChangedFile]:
        """
        拉取 PR 的全部变更文件（按 GitHub 返回顺序，跨页拼接）。

        - 每页 100 条；拿到不满一页就停
        - 任何一页非 2xx：整体失败，抛 `UpstreamError`（带状态码和响应体）
        """
        headers = self._headers()
        url = f"{self._api_base_url}/repos/{owner}/{repo}/pulls/{pull_number}/files"
        page = 1
        all_files: list[ChangedFile] = []
        while True:
            response = await request_with_retry(
                self._http_client,
                "GET",
                url,
                attempts=self._retry_attempts,
                base_ms=self._retry_base_ms,
                headers=headers,
                params={"per_page": FILES_PER_PAGE, "page": page},
            )
            if not response.is_success:
                raise UpstreamError(status_code=response.status_code, body=response.text)
            try:
                data = response.json()
            except ValueError as exc:
                raise UpstreamError(
                    status_code=response.status_code, body=f"Invalid PR files JSON: {exc}"
                ) from exc
            if not isinstance(data, list):
                raise UpstreamError(status_code=response.status_code, body=f"Unexpected PR files response shape: {data}")
            try:
                items = [GitHubPullRequestFile.model_validate(x) for x in data]
            except PydanticValidationError as exc:
                raise UpstreamError(
                    status_code=response.status_code,
                    body=f"Invalid PR file item: {exc.error_count()} validation error(s)",
                ) from exc
            all_files.extend(ChangedFile(filename=f.filename, status=f.status, patch=f.patch) for f in items)
            if len(items) < FILES_PER_PAGE:
                break
            page += 1
        return all_files

    async def create_issue_comment(self, owner: str, repo: str, pr_number: int, body: str) -> None:
        """在 PR 的对话区发一条评论（PR 在 GitHub API 里也是 issue）。"""
        url = f"{self._api_base_url}/repos/{owner}/{repo}/issues/{pr_number}/comments"
        response = await request_with_retry(
            self._http_client,
            "POST",
            url,
            attempts=self._retry_attempts,
            base_ms=self._retry_base_ms,
            headers=self._headers(),
            json={"body": body},
        )
        if not response.is_success:
            raise UpstreamError(status_code=response.status_code, body=response.text)
