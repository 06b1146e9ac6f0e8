"""
GitHub Webhook / API response schemas（Pydantic）。

说明：
- 字段只覆盖当前用到的子集（PR webhook + list files）
- webhook 相关字段用 Strict 类型：`"5"` / `5.0` 这种 PR 号直接视为无效 payload
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr

PullRequestAction = Literal["opened", "synchronize", "reopened"]

HANDLED_ACTIONS: tuple[str, ...] = ("opened", "synchronize", "reopened")


class GitHubOwner(BaseModel):
    login: StrictStr


class GitHubRepository(BaseModel):
    name: StrictStr
    owner: GitHubOwner


class GitHubPullRequest(BaseModel):
    number: StrictInt


class GitHubPullRequestWebhookEvent(BaseModel):
    """GitHub `pull_request` webhook event（最小结构，action 原样保留，由路由层过滤）。"""

    action: StrictStr
    pull_request: GitHubPullRequest
    repository: GitHubRepository


class WebhookPRContext(BaseModel):
    """从已验签的 payload 里抽出来的 PR 定位信息，用完即弃。"""

    model_config = ConfigDict(frozen=True)

    action: PullRequestAction
    owner: str
    repo: str
    pr_number: int


class GitHubPullRequestFile(BaseModel):
    """
    PR 文件列表 item（GET /pulls/{pull_number}/files）。

    patch 可能缺失（例如大文件/二进制/被截断）。
    """

    filename: str
    status: str | None = None
    patch: str | None = None
