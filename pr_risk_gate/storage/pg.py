from __future__ import annotations

import logging

import psycopg
from psycopg.types.json import Jsonb

from pr_risk_gate.errors import StorageError
from pr_risk_gate.storage.models import AssessmentRow
from pr_risk_gate.storage.models import FindingCount
from pr_risk_gate.storage.models import NewAssessment
from pr_risk_gate.storage.models import SeverityCount
from pr_risk_gate.storage.models import TrendPoint

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, connection_exception 类、admin/crash shutdown
RETRIABLE_SQLSTATES = frozenset(
    {
        "40001",
        "40P01",
        "08000",
        "08001",
        "08003",
        "08004",
        "08006",
        "57P01",
        "57P02",
        "57P03",
    }
)


class AssessmentStorageClient:
    """Postgres 连接器（每次操作一个短连接）。"""

    def __init__(self, dsn: str, connect_timeout_seconds: int) -> None:
        self._dsn = dsn
        self._connect_timeout_seconds = max(1, connect_timeout_seconds)

    def connect(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn, connect_timeout=self._connect_timeout_seconds)


def to_storage_error(exc: psycopg.Error) -> StorageError:
    """按 SQLSTATE 判断是否可重试；没有 SQLSTATE 的 OperationalError 视为连接层失败。"""
    sqlstate = exc.sqlstate
    retriable = sqlstate in RETRIABLE_SQLSTATES or (sqlstate is None and isinstance(exc, psycopg.OperationalError))
    return StorageError(f"{type(exc).__name__} (sqlstate={sqlstate}): {exc}", retriable=retriable)


def ensure_schema(client: AssessmentStorageClient) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS risk_assessments (
                    id BIGSERIAL PRIMARY KEY,
                    repo TEXT NOT NULL,
                    pr_number INTEGER NOT NULL,
                    score INTEGER NOT NULL,
                    severity TEXT NOT NULL,
                    findings JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_risk_assessments_repo_created
                ON risk_assessments (repo, created_at)
                """
            )
        conn.commit()


def insert_assessment(client: AssessmentStorageClient, assessment: NewAssessment) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO risk_assessments (repo, pr_number, score, severity, findings)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    assessment.repo,
                    assessment.pr_number,
                    assessment.score,
                    assessment.severity,
                    Jsonb(assessment.findings),
                ),
            )
        conn.commit()


def _window_filter(days: int, repo: str | None) -> tuple[str, list[object]]:
    clauses = ["created_at >= now() - make_interval(days => %s)"]
    params: list[object] = [days]
    if repo is not None:
        clauses.append("repo = %s")
        params.append(repo)
    return " AND ".join(clauses), params


def list_recent_assessments(client: AssessmentStorageClient, limit: int, repo: str | None) -> list[AssessmentRow]:
    if limit <= 0:
        raise ValueError("limit must be > 0")
    where = "WHERE repo = %s" if repo is not None else ""
    params: list[object] = [repo] if repo is not None else []
    params.append(limit)
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, repo, pr_number, score, severity, findings, created_at
                FROM risk_assessments
                {where}
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall()
    return [
        AssessmentRow(
            id=row[0],
            repo=row[1],
            pr_number=row[2],
            score=row[3],
            severity=row[4],
            findings=list(row[5] or []),
            created_at=row[6],
        )
        for row in rows
    ]


def risk_trends(client: AssessmentStorageClient, repo: str | None, days: int) -> list[TrendPoint]:
    where, params = _window_filter(days=days, repo=repo)
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT date_trunc('day', created_at)::date AS day,
                       round(avg(score)::numeric, 1)::float8 AS avg_score,
                       count(*) AS count
                FROM risk_assessments
                WHERE {where}
                GROUP BY day
                ORDER BY day ASC
                """,
                params,
            )
            rows = cur.fetchall()
    return [TrendPoint(day=row[0], avg_score=row[1], count=row[2]) for row in rows]


def query_severity_distribution(client: AssessmentStorageClient, days: int, repo: str | None) -> list[SeverityCount]:
    where, params = _window_filter(days=days, repo=repo)
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT severity, count(*) AS count
                FROM risk_assessments
                WHERE {where}
                GROUP BY severity
                ORDER BY count DESC, severity ASC
                """,
                params,
            )
            rows = cur.fetchall()
    return [SeverityCount(severity=row[0], count=row[1]) for row in rows]


def query_top_findings(client: AssessmentStorageClient, days: int, repo: str | None, limit: int) -> list[FindingCount]:
    if limit <= 0:
        raise ValueError("limit must be > 0")
    where, params = _window_filter(days=days, repo=repo)
    params.append(limit)
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT f.finding, count(*) AS count
                FROM risk_assessments, jsonb_array_elements_text(findings) AS f(finding)
                WHERE {where}
                GROUP BY f.finding
                ORDER BY count DESC, f.finding ASC
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall()
    return [FindingCount(finding=row[0], count=row[1]) for row in rows]


def ping_database(client: AssessmentStorageClient) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()


class PgAssessmentBackend:
    """把 pg.py 的同步函数包装成 `AssessmentBackend`，并把 psycopg 异常翻译成 `StorageError`。"""

    enabled = True

    def __init__(self, client: AssessmentStorageClient) -> None:
        self._client = client

    @property
    def client(self) -> AssessmentStorageClient:
        return self._client

    def save_assessment(self, assessment: NewAssessment) -> None:
        try:
            insert_assessment(self._client, assessment)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc

    def recent(self, limit: int, repo: str | None) -> list[AssessmentRow]:
        try:
            return list_recent_assessments(self._client, limit=limit, repo=repo)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc

    def trends(self, repo: str | None, days: int) -> list[TrendPoint]:
        try:
            return risk_trends(self._client, repo=repo, days=days)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc

    def severity_distribution(self, days: int, repo: str | None) -> list[SeverityCount]:
        try:
            return query_severity_distribution(self._client, days=days, repo=repo)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc

    def top_findings(self, days: int, repo: str | None, limit: int) -> list[FindingCount]:
        try:
            return query_top_findings(self._client, days=days, repo=repo, limit=limit)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc

    def ping(self) -> None:
        try:
            ping_database(self._client)
        except psycopg.Error as exc:
            raise to_storage_error(exc) from exc
