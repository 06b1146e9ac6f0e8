from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from pr_risk_gate.storage.models import AssessmentRow
from pr_risk_gate.storage.models import FindingCount
from pr_risk_gate.storage.models import NewAssessment
from pr_risk_gate.storage.models import SeverityCount
from pr_risk_gate.storage.models import TrendPoint


class InMemoryAssessmentBackend:
    """测试用存储后端：记录写入；`fail_with` 非空时每次调用都抛它。"""

    enabled = True

    def __init__(self) -> None:
        self.saved: list[NewAssessment] = []
        self.fail_with: Exception | None = None
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with

    def save_assessment(self, assessment: NewAssessment) -> None:
        self._maybe_fail()
        self.saved.append(assessment)

    def recent(self, limit: int, repo: str | None) -> list[AssessmentRow]:
        self._maybe_fail()
        rows = [
            AssessmentRow(
                id=i + 1,
                repo=a.repo,
                pr_number=a.pr_number,
                score=a.score,
                severity=a.severity,
                findings=a.findings,
                created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            )
            for i, a in enumerate(self.saved)
            if repo is None or a.repo == repo
        ]
        return list(reversed(rows))[:limit]

    def trends(self, repo: str | None, days: int) -> list[TrendPoint]:
        self._maybe_fail()
        scores = [a.score for a in self.saved if repo is None or a.repo == repo]
        if not scores:
            return []
        return [TrendPoint(day=date(2026, 1, 1), avg_score=sum(scores) / len(scores), count=len(scores))]

    def severity_distribution(self, days: int, repo: str | None) -> list[SeverityCount]:
        self._maybe_fail()
        counts: dict[str, int] = {}
        for a in self.saved:
            if repo is None or a.repo == repo:
                counts[a.severity] = counts.get(a.severity, 0) + 1
        return [SeverityCount(severity=s, count=c) for s, c in counts.items()]

    def top_findings(self, days: int, repo: str | None, limit: int) -> list[FindingCount]:
        self._maybe_fail()
        counts: dict[str, int] = {}
        for a in self.saved:
            if repo is None or a.repo == repo:
                for f in a.findings:
                    counts[f] = counts.get(f, 0) + 1
        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [FindingCount(finding=f, count=c) for f, c in ordered]

    def ping(self) -> None:
        self._maybe_fail()


@pytest.fixture
def backend() -> InMemoryAssessmentBackend:
    return InMemoryAssessmentBackend()
