"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（启动时解析一次，之后只读）
- 组装外部依赖（HTTP Client / GitHub Client / Resilient Store / 限流器）
- 装配中间件、异常映射和路由（health + analyze + analytics + github webhook）

注意：
- 业务流程不写在这里（由 `assessment/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接），在 lifespan 结束时关闭
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager

import anyio
import httpx
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

from pr_risk_gate.api.routes import build_analytics_router
from pr_risk_gate.api.routes import build_analyze_router
from pr_risk_gate.api.routes import build_health_router
from pr_risk_gate.assessment.orchestrator import AssessmentOrchestrator
from pr_risk_gate.assessment.orchestrator import build_comment_notifier
from pr_risk_gate.assessment.orchestrator import build_github_webhook_handler
from pr_risk_gate.auth.access import AccessControl
from pr_risk_gate.config import AppConfig
from pr_risk_gate.config import load_config_from_env
from pr_risk_gate.errors import AuthError
from pr_risk_gate.errors import ConfigError
from pr_risk_gate.errors import RateLimitExceededError
from pr_risk_gate.errors import SignatureError
from pr_risk_gate.errors import StorageError
from pr_risk_gate.errors import ValidationError
from pr_risk_gate.github.client import GitHubClient
from pr_risk_gate.github.webhook import build_github_webhook_router
from pr_risk_gate.infra.rate_limit import FixedWindowRateLimiter
from pr_risk_gate.policy.engine import PolicyEngine
from pr_risk_gate.storage.pg import AssessmentStorageClient
from pr_risk_gate.storage.pg import PgAssessmentBackend
from pr_risk_gate.storage.pg import ensure_schema
from pr_risk_gate.storage.resilient import AssessmentBackend
from pr_risk_gate.storage.resilient import NoopAssessmentBackend
from pr_risk_gate.storage.resilient import ResilientStore
from pr_risk_gate.storage.resilient import RetryPolicy

logger = logging.getLogger(__name__)

_SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "DENY",
    "referrer-policy": "no-referrer",
    "x-xss-protection": "0",
    "x-permitted-cross-domain-policies": "none",
    "cross-origin-opener-policy": "same-origin",
    "cross-origin-resource-policy": "same-origin",
    "permissions-policy": "accelerometer=(), camera=(), geolocation=(), gyroscope=(), microphone=(), payment=(), usb=()",
    "content-security-policy": (
        "default-src 'self'; base-uri 'self'; frame-ancestors 'none'; object-src 'none'; "
        "script-src 'self'; style-src 'self' 'unsafe-inline'; img-src 'self' data:; "
        "connect-src 'self'; form-action 'self'"
    ),
}
_HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _is_rate_limited_path(path: str) -> bool:
    return path.startswith("/api") or path == "/analyze"


def _is_secure(request: Request) -> bool:
    forwarded = request.headers.get("x-forwarded-proto", "").split(",")[0].strip()
    return request.url.scheme == "https" or forwarded == "https"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def build_storage_backend(config: AppConfig) -> AssessmentBackend:
    if config.storage.database_url is None:
        logger.warning("DATABASE_URL not set, assessments will not be persisted")
        return NoopAssessmentBackend()
    client = AssessmentStorageClient(
        dsn=config.storage.database_url,
        connect_timeout_seconds=config.storage.timeout_ms // 1000,
    )
    return PgAssessmentBackend(client=client)


def build_app(
    environ: Mapping[str, str] | None = None,
    backend: AssessmentBackend | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用；测试可注入 environ / 存储后端 / http client）。"""

    # 1) 配置：数值非法或生产环境缺关键配置会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)

    # 2) 可复用的 HTTP client：供 GitHub API 调用使用
    shared_http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    # 3) 存储：超时 + 重试 + 退避
    storage_backend = backend or build_storage_backend(config)
    store = ResilientStore(
        backend=storage_backend,
        policy=RetryPolicy(
            timeout_seconds=config.storage.timeout_ms / 1000,
            attempts=config.storage.retry_attempts,
            base_backoff_seconds=config.storage.retry_base_ms / 1000,
        ),
    )

    # 4) 业务组件
    access = AccessControl(config.api_keys)
    orchestrator = AssessmentOrchestrator(policy_engine=PolicyEngine(config.policies), store=store)
    github_client = GitHubClient(
        api_base_url=str(config.github.api_base_url),
        token=config.github.token,
        http_client=shared_http_client,
        retry_attempts=config.http_retry.attempts,
        retry_base_ms=config.http_retry.base_ms,
    )
    notifier = build_comment_notifier(github_client)
    rate_limiter = FixedWindowRateLimiter(max_requests=config.rate_limit_max_per_min)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if config.storage.ensure_schema and isinstance(storage_backend, PgAssessmentBackend):
            await anyio.to_thread.run_sync(ensure_schema, storage_backend.client)
        try:
            yield
        finally:
            rate_limiter.reset()
            if http_client is None:
                await shared_http_client.aclose()

    app = FastAPI(title="PR Risk Gate", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if _is_rate_limited_path(request.url.path):
            identity = request.client.host if request.client else "unknown"
            try:
                rate_limiter.hit(identity)
            except RateLimitExceededError as exc:
                logger.warning(f"{exc}: request_id={_request_id(request)} path={request.url.path}")
                return JSONResponse(status_code=429, content={"error": "rate limit exceeded"})
        return await call_next(request)

    @app.middleware("http")
    async def request_context(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request.state.request_id = str(uuid.uuid4())
        try:
            response = await call_next(request)
        except Exception as exc:
            # 未映射的异常在这里兜底，保证 500 也带 request id 和安全头
            logger.exception(
                f"Unhandled route error: request_id={request.state.request_id} method={request.method} "
                f"path={request.url.path} detail={exc}"
            )
            response = JSONResponse(status_code=500, content={"error": "internal server error"})
        response.headers["x-request-id"] = request.state.request_id
        for name, value in _SECURITY_HEADERS.items():
            response.headers[name] = value
        if config.enable_hsts and _is_secure(request):
            response.headers["strict-transport-security"] = _HSTS_VALUE
        return response

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.cors_origins),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["content-type", "authorization", "x-api-key"],
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(SignatureError)
    async def handle_signature_error(request: Request, exc: SignatureError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    @app.exception_handler(ConfigError)
    async def handle_internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Request failed: request_id={_request_id(request)} method={request.method} "
            f"path={request.url.path} error={type(exc).__name__} detail={exc}"
        )
        return JSONResponse(status_code=500, content={"error": "internal server error"})

    app.include_router(build_health_router(store=store))
    app.include_router(
        build_analyze_router(
            access=access,
            orchestrator=orchestrator,
            limits=config.limits,
            notifier=notifier,
        )
    )
    app.include_router(build_analytics_router(access=access, store=store))
    app.include_router(
        build_github_webhook_router(
            config=config.github,
            access=access,
            handler=build_github_webhook_handler(github_client=github_client, orchestrator=orchestrator),
            notifier=notifier,
        )
    )
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
