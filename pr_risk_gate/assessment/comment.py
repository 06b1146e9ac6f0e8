"""
PR 评论正文（确定性拼接，不做任何 I/O）。
"""

from __future__ import annotations

from pr_risk_gate.policy.engine import PolicyDecision
from pr_risk_gate.risk.models import RiskResult

_SEVERITY_ICONS = {
    "critical": "🛑",
    "high": "🔴",
    "medium": "🟠",
    "low": "🟢",
}


def format_comment(result: RiskResult, decision: PolicyDecision) -> str:
    lines: list[str] = []
    lines.append(f"## {_SEVERITY_ICONS[result.severity]} PR Risk Gate Result")
    lines.append(f"- **Risk Score:** {result.score}/100")
    lines.append(f"- **Severity:** {result.severity.upper()}")
    if result.findings:
        lines.append("- **Findings:** " + ", ".join(f"`{f}`" for f in result.findings))
    else:
        lines.append("- **Findings:** none")
    if result.recommendations:
        lines.append("- **Recommended checks:** " + "; ".join(result.recommendations))
    else:
        lines.append("- **Recommended checks:** none")
    lines.append("")
    if decision.allowed:
        lines.append("- **Policy gate:** ALLOW ✅")
    else:
        lines.append(f"- **Policy gate:** BLOCK ❌ ({decision.reason})")
    return "\n".join(lines)
