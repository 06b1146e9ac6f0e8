"""
Policy Engine：把 (repo, severity) 映射成 allow/block 决策。

解析顺序：精确 repo 匹配 -> 通配 `*` -> 内置默认（critical 才阻塞）。
配置来源容错：任何解析失败/空列表都回退到默认值，绝不让请求路径崩溃。
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pr_risk_gate.risk.models import SEVERITY_RANK
from pr_risk_gate.risk.models import Severity

logger = logging.getLogger(__name__)

WILDCARD_REPO = "*"


class PolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    repo: str
    block_at_or_above: Severity = Field(alias="blockAtOrAbove")


class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None


DEFAULT_POLICY = PolicyConfig(repo=WILDCARD_REPO, block_at_or_above="critical")
DEFAULT_POLICIES: tuple[PolicyConfig, ...] = (DEFAULT_POLICY,)


def parse_policies(raw: str | None) -> tuple[PolicyConfig, ...]:
    """
    解析 `RISK_POLICIES_JSON`，例如 `[{"repo":"api","blockAtOrAbove":"high"}]`。

    非 JSON、非列表、空列表、任一条目校验失败：一律回退到 `DEFAULT_POLICIES`。
    """
    if not raw:
        return DEFAULT_POLICIES
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("RISK_POLICIES_JSON is not valid JSON, using default policy")
        return DEFAULT_POLICIES
    if not isinstance(parsed, list) or not parsed:
        return DEFAULT_POLICIES
    try:
        return tuple(PolicyConfig.model_validate(item) for item in parsed)
    except ValidationError as exc:
        logger.warning(f"RISK_POLICIES_JSON failed validation, using default policy: {exc.error_count()} error(s)")
        return DEFAULT_POLICIES


class PolicyEngine:
    """启动时加载一次，之后只读（跨请求共享无需加锁）。"""

    def __init__(self, policies: Sequence[PolicyConfig]) -> None:
        self._policies = tuple(policies) or DEFAULT_POLICIES

    def resolve(self, repo: str) -> PolicyConfig:
        for policy in self._policies:
            if policy.repo == repo:
                return policy
        for policy in self._policies:
            if policy.repo == WILDCARD_REPO:
                return policy
        return DEFAULT_POLICY

    def decide(self, repo: str, severity: Severity) -> PolicyDecision:
        policy = self.resolve(repo)
        blocked = SEVERITY_RANK[severity] >= SEVERITY_RANK[policy.block_at_or_above]
        if not blocked:
            return PolicyDecision(allowed=True)
        return PolicyDecision(
            allowed=False,
            reason=(
                f"Blocked by policy: severity {severity.upper()} >= "
                f"{policy.block_at_or_above.upper()} threshold"
            ),
        )
