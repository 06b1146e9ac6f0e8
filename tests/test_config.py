from __future__ import annotations

import pytest

from pr_risk_gate.config import load_config_from_env
from pr_risk_gate.policy.engine import DEFAULT_POLICIES


def test_load_config_defaults() -> None:
    cfg = load_config_from_env(environ={})
    assert str(cfg.github.api_base_url).startswith("https://api.github.com")
    assert cfg.github.token is None
    assert cfg.github.webhook_secret is None
    assert cfg.storage.database_url is None
    assert cfg.storage.retry_attempts == 3
    assert cfg.rate_limit_max_per_min == 120
    assert cfg.api_keys == ()
    assert cfg.policies == DEFAULT_POLICIES


def test_load_config_parses_keys_policies_and_knobs() -> None:
    environ = {
        "API_KEYS_JSON": '[{"key":"k","role":"write","repos":["api"]}]',
        "RISK_POLICIES_JSON": '[{"repo":"api","blockAtOrAbove":"high"}]',
        "DB_RETRY_ATTEMPTS": "5",
        "RATE_LIMIT_MAX_PER_MIN": "10",
        "CORS_ORIGINS": "https://a.example, https://b.example,",
        "ENABLE_HSTS": "false",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.api_keys[0].repos == ("api",)
    assert cfg.policies[0].block_at_or_above == "high"
    assert cfg.storage.retry_attempts == 5
    assert cfg.rate_limit_max_per_min == 10
    assert cfg.cors_origins == ("https://a.example", "https://b.example")
    assert cfg.enable_hsts is False


def test_load_config_malformed_policies_never_fail() -> None:
    cfg = load_config_from_env(environ={"RISK_POLICIES_JSON": "{oops"})
    assert cfg.policies == DEFAULT_POLICIES


@pytest.mark.parametrize("value", ["abc", "0", "-1"])
def test_load_config_rejects_bad_numbers(value: str) -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={"DB_TIMEOUT_MS": value})


def test_load_config_production_requires_api_keys() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={"APP_ENV": "production", "GITHUB_WEBHOOK_SECRET": "s"})


def test_load_config_production_requires_webhook_secret() -> None:
    environ = {"APP_ENV": "production", "API_KEYS_JSON": '[{"key":"k","role":"read"}]'}
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_production_overrides() -> None:
    environ = {
        "APP_ENV": "production",
        "ENFORCE_API_KEYS_IN_PROD": "false",
        "ENFORCE_WEBHOOK_SECRET_IN_PROD": "false",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.is_production is True
