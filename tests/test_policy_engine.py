from __future__ import annotations

import pytest

from pr_risk_gate.policy.engine import DEFAULT_POLICIES
from pr_risk_gate.policy.engine import PolicyConfig
from pr_risk_gate.policy.engine import PolicyEngine
from pr_risk_gate.policy.engine import parse_policies


def test_default_policy_blocks_only_critical() -> None:
    engine = PolicyEngine(DEFAULT_POLICIES)
    assert engine.decide("any-repo", "high").allowed is True
    decision = engine.decide("any-repo", "critical")
    assert decision.allowed is False
    assert decision.reason == "Blocked by policy: severity CRITICAL >= CRITICAL threshold"


def test_exact_repo_wins_over_wildcard() -> None:
    engine = PolicyEngine(
        [
            PolicyConfig(repo="*", block_at_or_above="critical"),
            PolicyConfig(repo="payments", block_at_or_above="medium"),
        ]
    )
    assert engine.decide("payments", "medium").allowed is False
    assert engine.decide("docs", "medium").allowed is True


def test_no_wildcard_falls_back_to_builtin_default() -> None:
    engine = PolicyEngine([PolicyConfig(repo="payments", block_at_or_above="low")])
    assert engine.resolve("other").block_at_or_above == "critical"
    assert engine.decide("payments", "low").allowed is False


def test_parse_policies_accepts_camel_case_json() -> None:
    policies = parse_policies('[{"repo":"ai-pr-risk-gate","blockAtOrAbove":"high"}]')
    assert policies == (PolicyConfig(repo="ai-pr-risk-gate", block_at_or_above="high"),)


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "not json",
        "[]",
        '{"repo":"x"}',
        '[{"repo":"x","blockAtOrAbove":"extreme"}]',
        '[{"blockAtOrAbove":"high"}]',
    ],
)
def test_parse_policies_malformed_falls_back_to_default(raw: str | None) -> None:
    assert parse_policies(raw) == DEFAULT_POLICIES


@pytest.mark.parametrize("severity", ["low", "medium", "high", "critical"])
def test_decision_matches_rank_comparison(severity: str) -> None:
    engine = PolicyEngine([PolicyConfig(repo="*", block_at_or_above="high")])
    expected_allowed = severity in ("low", "medium")
    assert engine.decide("repo", severity).allowed is expected_allowed
