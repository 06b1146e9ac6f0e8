"""
GitHub Webhook 接入层。

职责：
- 配置了 API keys 时，要求 write key 或有效签名之一（否则 401）
- 校验 `X-Hub-Signature-256`（HMAC SHA256，常量时间比较）
- 校验 event 类型（只处理 pull_request）+ 过滤 action（opened/synchronize/reopened）
- 调用业务 handler（拉文件 + 评估 + 落库），成功后异步发 PR 评论
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Awaitable, Callable

import httpx
from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Header
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from pr_risk_gate.assessment.orchestrator import AssessmentOutcome
from pr_risk_gate.assessment.orchestrator import CommentNotifier
from pr_risk_gate.auth.access import AccessControl
from pr_risk_gate.auth.access import extract_api_key
from pr_risk_gate.config import GitHubConfig
from pr_risk_gate.errors import AuthError
from pr_risk_gate.errors import ConfigError
from pr_risk_gate.errors import SignatureError
from pr_risk_gate.errors import StorageError
from pr_risk_gate.errors import UpstreamError
from pr_risk_gate.errors import ValidationError
from pr_risk_gate.github.schemas import HANDLED_ACTIONS
from pr_risk_gate.github.schemas import GitHubPullRequestWebhookEvent
from pr_risk_gate.github.schemas import WebhookPRContext

logger = logging.getLogger(__name__)

GitHubWebhookHandler = Callable[[WebhookPRContext], Awaitable[AssessmentOutcome]]

_SIGNATURE_PREFIX = "sha256="


def compute_github_signature(body: bytes, secret: str) -> str:
    return _SIGNATURE_PREFIX + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_github_signature(body: bytes, signature_header: str | None, secret: str | None) -> bool:
    """
    校验 webhook 签名。

    - 未配置 secret：直接放行（本地/开发用的 open 模式，对外部署必须配置）
    - 配置了 secret 但没带签名头：失败
    - 长度不一致直接拒绝；长度一致再做常量时间比较
    """
    if not secret:
        return True
    if not signature_header:
        return False
    expected = compute_github_signature(body=body, secret=secret).encode("utf-8")
    received = signature_header.encode("utf-8", errors="replace")
    if len(expected) != len(received):
        return False
    return hmac.compare_digest(expected, received)


def parse_webhook_pr_context(payload: object) -> WebhookPRContext | None:
    """payload 结构不对 / action 不关心 / repo、owner 为空：返回 None（由路由返回 ignored）。"""
    try:
        event = GitHubPullRequestWebhookEvent.model_validate(payload)
    except PydanticValidationError:
        return None
    if event.action not in HANDLED_ACTIONS:
        return None
    if not event.repository.name or not event.repository.owner.login:
        return None
    return WebhookPRContext(
        action=event.action,
        owner=event.repository.owner.login,
        repo=event.repository.name,
        pr_number=event.pull_request.number,
    )


def _safe_detail(exc: Exception) -> str:
    if isinstance(exc, StorageError):
        return "assessment storage unavailable"
    if isinstance(exc, httpx.HTTPError):
        return f"GitHub API request failed: {type(exc).__name__}"
    return str(exc)


def build_github_webhook_router(
    config: GitHubConfig,
    access: AccessControl,
    handler: GitHubWebhookHandler,
    notifier: CommentNotifier,
) -> APIRouter:
    router = APIRouter()

    def _check_webhook_access(request: Request, body: bytes, signature: str | None) -> None:
        if not access.enabled:
            return
        key_config = access.lookup(extract_api_key(request.headers))
        if key_config is not None and key_config.role == "write":
            return
        if config.webhook_secret and verify_github_signature(body, signature, config.webhook_secret):
            return
        raise AuthError(status_code=401, message="webhook auth required")

    @router.post("/webhook/github")
    async def github_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_github_event: str | None = Header(default=None, alias="X-GitHub-Event"),
        x_hub_signature_256: str | None = Header(default=None, alias="X-Hub-Signature-256"),
    ) -> JSONResponse:
        body = await request.body()
        _check_webhook_access(request=request, body=body, signature=x_hub_signature_256)

        if not verify_github_signature(body, x_hub_signature_256, config.webhook_secret):
            logger.error(f"Invalid webhook signature: event={x_github_event}")
            raise SignatureError("invalid signature")

        if x_github_event != "pull_request":
            return JSONResponse(status_code=200, content={"status": "ignored"})

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Invalid JSON payload") from exc

        context = parse_webhook_pr_context(payload)
        if context is None:
            return JSONResponse(status_code=200, content={"status": "ignored"})

        try:
            outcome = await handler(context)
        except (ConfigError, UpstreamError, StorageError, httpx.HTTPError) as exc:
            logger.error(
                f"Webhook processing failed: repo={context.owner}/{context.repo} "
                f"prNumber={context.pr_number} detail={exc}"
            )
            return JSONResponse(
                status_code=500,
                content={"error": "webhook processing failed", "detail": _safe_detail(exc)},
            )

        background_tasks.add_task(notifier, context.owner, context.repo, context.pr_number, outcome)
        logger.info(
            f"Webhook analysis complete: repo={context.owner}/{context.repo} prNumber={context.pr_number} "
            f"score={outcome.result.score} severity={outcome.result.severity} "
            f"policyAllowed={outcome.decision.allowed}"
        )
        return JSONResponse(
            status_code=202 if outcome.decision.allowed else 409,
            content={**outcome.to_response(), "source": "webhook"},
        )

    return router
