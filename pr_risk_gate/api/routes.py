"""
HTTP 路由（薄层）：校验输入 -> 调 orchestrator / store -> 组装响应。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Request
from fastapi.responses import JSONResponse

from pr_risk_gate.api.schemas import validate_analyze_request
from pr_risk_gate.assessment.orchestrator import AssessmentOrchestrator
from pr_risk_gate.assessment.orchestrator import CommentNotifier
from pr_risk_gate.auth.access import AccessControl
from pr_risk_gate.auth.dependencies import require_api_role
from pr_risk_gate.config import RequestLimits
from pr_risk_gate.errors import ValidationError
from pr_risk_gate.storage.resilient import ResilientStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "pr-risk-gate"
DEFAULT_DAYS = 30
MAX_DAYS = 365
DEFAULT_RECENT_LIMIT = 20
MAX_RECENT_LIMIT = 100
TOP_FINDINGS_LIMIT = 8


def parse_days(raw: str | None) -> int:
    """非数字 / <= 0 -> 30；上限 365。"""
    if raw is None:
        return DEFAULT_DAYS
    try:
        days = int(raw)
    except ValueError:
        return DEFAULT_DAYS
    if days <= 0:
        return DEFAULT_DAYS
    return min(days, MAX_DAYS)


def parse_limit(raw: str | None) -> int:
    """非数字 -> 20；夹到 [1, 100]。"""
    if raw is None:
        return DEFAULT_RECENT_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        return DEFAULT_RECENT_LIMIT
    return max(1, min(limit, MAX_RECENT_LIMIT))


def build_analyze_router(
    access: AccessControl,
    orchestrator: AssessmentOrchestrator,
    limits: RequestLimits,
    notifier: CommentNotifier,
) -> APIRouter:
    router = APIRouter()
    write_guard = require_api_role(access, "write")

    async def analyze(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        try:
            body = await request.json()
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("invalid request body") from exc
        try:
            payload = validate_analyze_request(body, limits)
        except ValidationError as exc:
            logger.error(f"Analyze validation failed: {exc}")
            raise

        outcome = await orchestrator.assess(repo=payload.repo, pr_number=payload.pr_number, files=payload.files)
        if payload.owner:
            background_tasks.add_task(notifier, payload.owner, payload.repo, payload.pr_number, outcome)

        logger.info(
            f"Analysis complete: repo={payload.repo} prNumber={payload.pr_number} "
            f"score={outcome.result.score} severity={outcome.result.severity} "
            f"policyAllowed={outcome.decision.allowed}"
        )
        return JSONResponse(status_code=200 if outcome.decision.allowed else 409, content=outcome.to_response())

    router.add_api_route("/api/analyze", analyze, methods=["POST"], dependencies=[Depends(write_guard)])
    router.add_api_route("/analyze", analyze, methods=["POST"], dependencies=[Depends(write_guard)])
    return router


def build_analytics_router(access: AccessControl, store: ResilientStore) -> APIRouter:
    """只读分析接口：存储失败时降级为空结果（由 ResilientStore 负责）。"""
    router = APIRouter(prefix="/api", dependencies=[Depends(require_api_role(access, "read"))])

    @router.get("/recent")
    async def recent(request: Request) -> dict[str, Any]:
        repo = request.query_params.get("repo")
        limit = parse_limit(request.query_params.get("limit"))
        rows = await store.recent(limit=limit, repo=repo)
        return {"limit": limit, "rows": [r.model_dump(mode="json", by_alias=True) for r in rows]}

    @router.get("/trends")
    async def trends(request: Request) -> dict[str, Any]:
        repo = request.query_params.get("repo")
        days = parse_days(request.query_params.get("days"))
        points = await store.trends(repo=repo, days=days)
        return {
            "repo": repo or "all",
            "days": days,
            "trends": [p.model_dump(mode="json", by_alias=True) for p in points],
        }

    @router.get("/severity")
    async def severity(request: Request) -> dict[str, Any]:
        repo = request.query_params.get("repo")
        days = parse_days(request.query_params.get("days"))
        rows = await store.severity_distribution(days=days, repo=repo)
        return {"repo": repo or "all", "days": days, "rows": [r.model_dump(mode="json") for r in rows]}

    @router.get("/findings")
    async def findings(request: Request) -> dict[str, Any]:
        repo = request.query_params.get("repo")
        days = parse_days(request.query_params.get("days"))
        rows = await store.top_findings(days=days, repo=repo, limit=TOP_FINDINGS_LIMIT)
        return {"repo": repo or "all", "days": days, "rows": [r.model_dump(mode="json") for r in rows]}

    return router


def build_health_router(store: ResilientStore) -> APIRouter:
    router = APIRouter()

    async def _readiness(extra: dict[str, object]) -> JSONResponse:
        if not store.enabled:
            return JSONResponse(status_code=200, content={"ok": True, "service": SERVICE_NAME, **extra, "db": "disabled"})
        if not await store.ping():
            return JSONResponse(status_code=503, content={"ok": False, "service": SERVICE_NAME, **extra, "db": "down"})
        return JSONResponse(status_code=200, content={"ok": True, "service": SERVICE_NAME, **extra, "db": "up"})

    @router.get("/health/live")
    async def live() -> dict[str, Any]:
        """存活探针：进程能响应就是 200。"""
        return {"ok": True, "service": SERVICE_NAME, "check": "live"}

    @router.get("/health/ready")
    async def ready() -> JSONResponse:
        return await _readiness({"check": "ready"})

    @router.get("/health")
    async def health() -> JSONResponse:
        return await _readiness({})

    return router
