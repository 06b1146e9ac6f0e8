"""
API key 鉴权/授权。

规则：
- key 列表启动时加载一次，之后只读；列表为空 = 关闭鉴权（所有请求放行）
- 取 key 顺序：`x-api-key` 头优先，其次 `Authorization: Bearer <key>`
- 角色按接口划分（read 接口要 read key，write 接口要 write key），不做层级继承
- repo 范围：`repos` 缺失/为空/包含 `*` 表示不限；否则目标 repo 必须原样出现在列表里
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from pr_risk_gate.errors import AuthError

logger = logging.getLogger(__name__)

Role = Literal["read", "write"]

_BEARER_PREFIX = "Bearer "


class ApiKeyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    role: Role
    repos: tuple[str, ...] | None = None

    @property
    def unrestricted(self) -> bool:
        return not self.repos or "*" in self.repos


def parse_api_keys(raw: str | None) -> tuple[ApiKeyConfig, ...]:
    """
    解析 `API_KEYS_JSON`。

    - 非 JSON / 非列表：返回空（鉴权关闭，生产环境由 config 层拒绝启动）
    - 单条不合法（不是对象、key 不是字符串、role 不在 read/write）：丢弃该条
    """
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("API_KEYS_JSON is not valid JSON, API key auth disabled")
        return ()
    if not isinstance(parsed, list):
        return ()

    keys: list[ApiKeyConfig] = []
    for index, item in enumerate(parsed):
        if not isinstance(item, dict) or not isinstance(item.get("key"), str):
            logger.warning(f"Dropping API key entry #{index}: missing string key")
            continue
        try:
            keys.append(ApiKeyConfig.model_validate(item))
        except ValidationError:
            logger.warning(f"Dropping API key entry #{index}: invalid role or repos")
    return tuple(keys)


def extract_api_key(headers: Mapping[str, str]) -> str | None:
    header_key = headers.get("x-api-key")
    if header_key:
        return header_key
    authorization = headers.get("authorization")
    if authorization and authorization.startswith(_BEARER_PREFIX):
        token = authorization[len(_BEARER_PREFIX):].strip()
        return token or None
    return None


class AccessControl:
    """无可变状态，可在请求之间安全共享。"""

    def __init__(self, api_keys: Sequence[ApiKeyConfig]) -> None:
        self._by_key: dict[str, ApiKeyConfig] = {}
        for config in api_keys:
            # 重复 key 以第一条为准
            self._by_key.setdefault(config.key, config)

    @property
    def enabled(self) -> bool:
        return bool(self._by_key)

    def lookup(self, api_key: str | None) -> ApiKeyConfig | None:
        if not api_key:
            return None
        return self._by_key.get(api_key)

    def authorize(self, role_required: Role, api_key: str | None, repo: str | None) -> ApiKeyConfig | None:
        """
        通过则返回命中的 key 配置（鉴权关闭时返回 None）；否则抛 `AuthError`。

        - 401：缺 key / key 不存在
        - 403：角色不匹配 / repo 不在范围内
        """
        if not self.enabled:
            return None
        if not api_key:
            raise AuthError(status_code=401, message="missing API key")
        config = self.lookup(api_key)
        if config is None:
            raise AuthError(status_code=401, message="invalid API key")
        if config.role != role_required:
            raise AuthError(status_code=403, message=f"{role_required} access required")
        if not config.unrestricted and (repo is None or repo not in config.repos):
            raise AuthError(status_code=403, message="repo access denied")
        return config
