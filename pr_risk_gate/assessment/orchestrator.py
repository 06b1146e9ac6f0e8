"""
Assessment Orchestrator（核心流程编排）。

固定顺序（不可调换）：
Rule Engine -> Severity（内嵌在 RiskResult 里）-> Policy Engine -> Resilient Store 落库 -> 返回

- 决策必须先持久化，才能作为权威结果返回；落库失败直接抛给调用方（5xx）
- 同一 PR 的并发/重复评估互不协调，各自落一行（没有幂等 key）
- 发 PR 评论是 best-effort：只在落库之后执行，失败只记日志
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from pr_risk_gate.assessment.comment import format_comment
from pr_risk_gate.github.client import GitHubClient
from pr_risk_gate.github.schemas import WebhookPRContext
from pr_risk_gate.policy.engine import PolicyDecision
from pr_risk_gate.policy.engine import PolicyEngine
from pr_risk_gate.risk.engine import DEFAULT_RULES
from pr_risk_gate.risk.engine import RiskRule
from pr_risk_gate.risk.engine import evaluate_risk
from pr_risk_gate.risk.models import ChangedFile
from pr_risk_gate.risk.models import RiskResult
from pr_risk_gate.storage.models import NewAssessment
from pr_risk_gate.storage.resilient import ResilientStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssessmentOutcome:
    result: RiskResult
    decision: PolicyDecision

    def to_response(self) -> dict[str, object]:
        """`{score, severity, findings, recommendations, policy}`（HTTP 响应体）。"""
        return {
            **self.result.model_dump(),
            "policy": self.decision.model_dump(exclude_none=True),
        }


CommentNotifier = Callable[[str, str, int, AssessmentOutcome], Awaitable[None]]


class AssessmentOrchestrator:
    """运行时依赖集合（policy + store + 规则集），由 `build_app()` 装配。"""

    def __init__(
        self,
        policy_engine: PolicyEngine,
        store: ResilientStore,
        rules: Sequence[RiskRule] = DEFAULT_RULES,
    ) -> None:
        self._policy_engine = policy_engine
        self._store = store
        self._rules = tuple(rules)

    async def assess(self, repo: str, pr_number: int, files: Sequence[ChangedFile]) -> AssessmentOutcome:
        result = evaluate_risk(files, rules=self._rules)
        decision = self._policy_engine.decide(repo, result.severity)
        await self._store.save_assessment(
            NewAssessment(
                repo=repo,
                pr_number=pr_number,
                score=result.score,
                severity=result.severity,
                findings=result.findings,
            )
        )
        return AssessmentOutcome(result=result, decision=decision)


def build_github_webhook_handler(
    github_client: GitHubClient,
    orchestrator: AssessmentOrchestrator,
) -> Callable[[WebhookPRContext], Awaitable[AssessmentOutcome]]:
    """
    装配 webhook handler：
    - 拉取 PR 全部变更文件（GitHubClient，分页 + 重试）
    - 交给 orchestrator 评估并落库
    """

    async def handle(context: WebhookPRContext) -> AssessmentOutcome:
        files = await github_client.list_pull_request_files(
            owner=context.owner,
            repo=context.repo,
            pull_number=context.pr_number,
        )
        logger.info(f"Fetched {len(files)} changed file(s) for {context.owner}/{context.repo}#{context.pr_number}")
        return await orchestrator.assess(repo=context.repo, pr_number=context.pr_number, files=files)

    return handle


def build_comment_notifier(github_client: GitHubClient) -> CommentNotifier:
    """返回一个 fire-and-forget 的评论发送函数（没有 token 时什么都不做）。"""

    async def notify(owner: str, repo: str, pr_number: int, outcome: AssessmentOutcome) -> None:
        if not github_client.has_token:
            return
        body = format_comment(result=outcome.result, decision=outcome.decision)
        try:
            await github_client.create_issue_comment(owner=owner, repo=repo, pr_number=pr_number, body=body)
        except Exception as exc:
            # 决策已经落库并返回，评论失败不能影响结果
            logger.error(f"PR comment failed: repo={owner}/{repo} prNumber={pr_number} detail={exc}")

    return notify
