"""
FastAPI 依赖：把 `AccessControl` 接到路由上。

目标 repo 的来源：write 接口取请求体里的 `repo`，read 接口取 query string 里的 `repo`。
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable

from fastapi import Request

from pr_risk_gate.auth.access import AccessControl
from pr_risk_gate.auth.access import Role
from pr_risk_gate.auth.access import extract_api_key


async def _repo_from_body(request: Request) -> str | None:
    try:
        body = await request.json()
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if isinstance(body, dict) and isinstance(body.get("repo"), str):
        return body["repo"]
    return None


def require_api_role(access: AccessControl, role: Role) -> Callable[[Request], Awaitable[None]]:
    async def guard(request: Request) -> None:
        if not access.enabled:
            return
        if role == "write":
            repo = await _repo_from_body(request)
        else:
            repo = request.query_params.get("repo")
        access.authorize(role_required=role, api_key=extract_api_key(request.headers), repo=repo)

    return guard
