"""
风险评估领域模型（Pydantic）。

- `ChangedFile`：一次 PR 中被改动的单个文件（每次请求临时构造，不直接落库）
- `RiskResult`：规则引擎的输出（生成后不可变）
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_RANK: dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


class ChangedFile(BaseModel):
    filename: str
    status: str | None = None
    patch: str | None = None


class RiskResult(BaseModel):
    """findings/recommendations 按文本去重，保留首次命中的顺序。"""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    severity: Severity
    findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
