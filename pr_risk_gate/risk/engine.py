"""
规则引擎（非 AI、确定性）。

特点：
- 每条规则是一个纯函数谓词 + 分值 + finding/recommendation 文案
- 所有规则对所有文件逐一评估：每命中一次就加一次分，但文案按文本去重
- 只是启发式的模式匹配，不解析 AST，不保证安全覆盖（只作为分流信号）
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from pr_risk_gate.risk.models import ChangedFile
from pr_risk_gate.risk.models import RiskResult
from pr_risk_gate.risk.models import Severity

MAX_SCORE = 100
LARGE_ADDITION_LINES = 250
LARGE_CHANGESET_FILES = 25
LARGE_CHANGESET_POINTS = 10
LARGE_CHANGESET_FINDING = "High file-count change set"
LARGE_CHANGESET_RECOMMENDATION = "Break PR into smaller reviewable chunks"

_AUTH_RE = re.compile(r"auth|jwt|session|permission|rbac|middleware", re.IGNORECASE)
_SQL_PATCH_RE = re.compile(r"sql|query\(|where\(|select\s|insert\s|delete\s|update\s", re.IGNORECASE)
_MIGRATION_PATH_RE = re.compile(r"migrations?/", re.IGNORECASE)
_INFRA_PATH_RE = re.compile(r"\.github/workflows|dockerfile|docker-compose|k8s|terraform|helm", re.IGNORECASE)
_LOCKFILE_RE = re.compile(
    r"package-lock\.json|pnpm-lock\.yaml|yarn\.lock|requirements\.txt|poetry\.lock",
    re.IGNORECASE,
)
_DELETED_TEST_RE = re.compile(r"-\s*it\(|-\s*test\(|-\s*describe\(", re.IGNORECASE)
_TEST_PATH_RE = re.compile(r"test|spec", re.IGNORECASE)


@dataclass(frozen=True)
class RiskRule:
    """一条规则：谓词命中一个文件时加 `points` 分。"""

    name: str
    predicate: Callable[[ChangedFile], bool]
    points: int
    finding: str
    recommendation: str


def touches_auth(f: ChangedFile) -> bool:
    return bool(_AUTH_RE.search(f.filename + (f.patch or "")))


def touches_database(f: ChangedFile) -> bool:
    return bool(_SQL_PATCH_RE.search(f.patch or "")) or bool(_MIGRATION_PATH_RE.search(f.filename))


def touches_infra(f: ChangedFile) -> bool:
    return bool(_INFRA_PATH_RE.search(f.filename))


def touches_dependencies(f: ChangedFile) -> bool:
    return bool(_LOCKFILE_RE.search(f.filename))


def deletes_tests(f: ChangedFile) -> bool:
    return bool(_DELETED_TEST_RE.search(f.patch or "")) and bool(_TEST_PATH_RE.search(f.filename))


def count_added_lines(patch: str | None) -> int:
    """统计 diff 中 `+` 开头的行数。"""
    if not patch:
        return 0
    return sum(1 for line in patch.split("\n") if line.startswith("+"))


def adds_many_lines(f: ChangedFile) -> bool:
    return count_added_lines(f.patch) > LARGE_ADDITION_LINES


DEFAULT_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        name="auth",
        predicate=touches_auth,
        points=22,
        finding="Authentication/authorization-related code changed",
        recommendation="Require security review and add auth regression tests",
    ),
    RiskRule(
        name="database",
        predicate=touches_database,
        points=16,
        finding="Database query or migration changes detected",
        recommendation="Validate query safety/performance and run migration in staging first",
    ),
    RiskRule(
        name="infra",
        predicate=touches_infra,
        points=14,
        finding="Infrastructure/CI configuration changed",
        recommendation="Require DevOps review before merge",
    ),
    RiskRule(
        name="dependencies",
        predicate=touches_dependencies,
        points=10,
        finding="Dependency changes detected",
        recommendation="Run dependency vulnerability scan",
    ),
    RiskRule(
        name="test_deletions",
        predicate=deletes_tests,
        points=12,
        finding="Test deletions detected",
        recommendation="Block merge unless equivalent tests are added",
    ),
    RiskRule(
        name="large_addition",
        predicate=adds_many_lines,
        points=14,
        finding="Large code additions in single file",
        recommendation="Split PR or require senior reviewer",
    ),
)


def classify_severity(score: int) -> Severity:
    """分数 -> 严重等级；每档下界闭区间。"""
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def evaluate_risk(files: Sequence[ChangedFile], rules: Sequence[RiskRule] = DEFAULT_RULES) -> RiskResult:
    """
    对所有文件跑所有规则，返回 `RiskResult`。

    - 分数先累加（可以超过 100），最终只在输出时截断到 [0, 100]
    - 文件数超过 25 时额外加一次 changeset 规模分
    """
    score = 0
    # dict 作为有序集合：按文本去重
    findings: dict[str, None] = {}
    recommendations: dict[str, None] = {}

    for file in files:
        for rule in rules:
            if rule.predicate(file):
                score += rule.points
                findings.setdefault(rule.finding, None)
                recommendations.setdefault(rule.recommendation, None)

    if len(files) > LARGE_CHANGESET_FILES:
        score += LARGE_CHANGESET_POINTS
        findings.setdefault(LARGE_CHANGESET_FINDING, None)
        recommendations.setdefault(LARGE_CHANGESET_RECOMMENDATION, None)

    clamped = max(0, min(score, MAX_SCORE))
    return RiskResult(
        score=clamped,
        severity=classify_severity(clamped),
        findings=list(findings),
        recommendations=list(recommendations),
    )
