from __future__ import annotations

import hashlib
import hmac

from pr_risk_gate.github.webhook import compute_github_signature
from pr_risk_gate.github.webhook import parse_webhook_pr_context
from pr_risk_gate.github.webhook import verify_github_signature

SECRET = "s3cret"
BODY = b'{"action":"opened"}'


def test_signature_is_reproducible() -> None:
    expected = "sha256=" + hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert compute_github_signature(BODY, SECRET) == expected
    assert verify_github_signature(BODY, expected, SECRET) is True


def test_altered_byte_invalidates_signature() -> None:
    signature = compute_github_signature(BODY, SECRET)
    assert verify_github_signature(BODY.replace(b"opened", b"openeD"), signature, SECRET) is False


def test_length_mismatch_is_rejected_without_raising() -> None:
    assert verify_github_signature(BODY, "sha256=abc", SECRET) is False
    assert verify_github_signature(BODY, "sha256=" + "é" * 64, SECRET) is False


def test_missing_header_fails_when_secret_configured() -> None:
    assert verify_github_signature(BODY, None, SECRET) is False


def test_open_mode_without_secret() -> None:
    assert verify_github_signature(BODY, None, None) is True
    assert verify_github_signature(BODY, "garbage", "") is True


def _payload(action: str = "opened", number: object = 7) -> dict[str, object]:
    return {
        "action": action,
        "pull_request": {"number": number},
        "repository": {"name": "api", "owner": {"login": "acme"}},
    }


def test_parse_context_for_handled_action() -> None:
    context = parse_webhook_pr_context(_payload(action="synchronize"))
    assert context is not None
    assert (context.owner, context.repo, context.pr_number) == ("acme", "api", 7)


def test_parse_context_ignores_other_actions_and_bad_payloads() -> None:
    assert parse_webhook_pr_context(_payload(action="closed")) is None
    assert parse_webhook_pr_context(_payload(number="7")) is None
    assert parse_webhook_pr_context(_payload(number=7.5)) is None
    assert parse_webhook_pr_context({"action": "opened"}) is None
    assert parse_webhook_pr_context([]) is None
    empty_repo = _payload()
    empty_repo["repository"] = {"name": "", "owner": {"login": "acme"}}
    assert parse_webhook_pr_context(empty_repo) is None
