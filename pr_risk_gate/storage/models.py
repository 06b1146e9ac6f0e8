from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class NewAssessment(BaseModel):
    repo: str
    pr_number: int
    score: int
    severity: str
    findings: list[str]


class AssessmentRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    repo: str
    pr_number: int = Field(serialization_alias="prNumber")
    score: int
    severity: str
    findings: list[str]
    created_at: datetime = Field(serialization_alias="createdAt")


class TrendPoint(BaseModel):
    day: date
    avg_score: float = Field(serialization_alias="avgScore")
    count: int


class SeverityCount(BaseModel):
    severity: str
    count: int


class FindingCount(BaseModel):
    finding: str
    count: int
