"""
应用配置加载。

设计目标：
- **只在启动时读一次环境变量**：`load_config_from_env` 返回不可变的 `AppConfig`，
  由 `build_app()` 传给各组件构造函数，请求路径里不再临时读 env
- **类型安全**：使用 Pydantic 校验 URL/数值等
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from pr_risk_gate.auth.access import ApiKeyConfig
from pr_risk_gate.auth.access import parse_api_keys
from pr_risk_gate.policy.engine import PolicyConfig
from pr_risk_gate.policy.engine import parse_policies

DEFAULT_GITHUB_API_BASE_URL = "https://api.github.com"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


class GitHubConfig(BaseModel):
    """token / webhook_secret 都可选：缺 token 时 webhook 拉文件报 ConfigError，缺 secret 时签名校验放行。"""

    model_config = ConfigDict(frozen=True)

    api_base_url: HttpUrl
    token: str | None = None
    webhook_secret: str | None = None


class StorageConfig(BaseModel):
    """`database_url` 为空表示不落库（写入 no-op，读接口返回空）。"""

    model_config = ConfigDict(frozen=True)

    database_url: str | None = None
    timeout_ms: int = Field(default=5000, gt=0)
    retry_attempts: int = Field(default=3, gt=0)
    retry_base_ms: int = Field(default=100, gt=0)
    ensure_schema: bool = False


class HttpRetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, gt=0)
    base_ms: int = Field(default=150, gt=0)


class RequestLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_files_per_request: int = Field(default=500, gt=0)
    max_filename_length: int = Field(default=300, gt=0)
    max_patch_length: int = Field(default=200_000, gt=0)


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    github: GitHubConfig
    storage: StorageConfig
    http_retry: HttpRetryConfig
    limits: RequestLimits
    rate_limit_max_per_min: int = Field(default=120, gt=0)
    api_keys: tuple[ApiKeyConfig, ...] = ()
    policies: tuple[PolicyConfig, ...] = ()
    cors_origins: tuple[str, ...] = ()
    enable_hsts: bool = True
    is_production: bool = False


def _optional(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key, "").strip()
    return value or None


def _positive_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got: {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{key} must be > 0, got: {value}")
    return value


def _flag(environ: Mapping[str, str], key: str, default: bool) -> bool:
    raw = environ.get(key, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{key} must be a boolean flag, got: {raw!r}")


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：数值非法、或生产环境缺少 API keys / webhook secret 时抛 `ValueError`
    - `API_KEYS_JSON` / `RISK_POLICIES_JSON` 是容错解析（坏输入不会让启动失败）
    """
    is_production = environ.get("APP_ENV", "").strip().lower() == "production"
    api_keys = parse_api_keys(_optional(environ, "API_KEYS_JSON"))
    webhook_secret = _optional(environ, "GITHUB_WEBHOOK_SECRET")

    if is_production and _flag(environ, "ENFORCE_API_KEYS_IN_PROD", True) and not api_keys:
        raise ValueError(
            "Refusing to start in production without API_KEYS_JSON (set ENFORCE_API_KEYS_IN_PROD=false to override)"
        )
    if is_production and _flag(environ, "ENFORCE_WEBHOOK_SECRET_IN_PROD", True) and webhook_secret is None:
        raise ValueError(
            "Refusing to start in production without GITHUB_WEBHOOK_SECRET "
            "(set ENFORCE_WEBHOOK_SECRET_IN_PROD=false to override)"
        )

    cors_origins = tuple(v.strip() for v in environ.get("CORS_ORIGINS", "").split(",") if v.strip())

    # 交给 Pydantic 做类型校验（例如 URL 合法性）
    return AppConfig(
        github=GitHubConfig(
            api_base_url=environ.get("GITHUB_API_BASE_URL") or DEFAULT_GITHUB_API_BASE_URL,
            token=_optional(environ, "GITHUB_TOKEN"),
            webhook_secret=webhook_secret,
        ),
        storage=StorageConfig(
            database_url=_optional(environ, "DATABASE_URL"),
            timeout_ms=_positive_int(environ, "DB_TIMEOUT_MS", 5000),
            retry_attempts=_positive_int(environ, "DB_RETRY_ATTEMPTS", 3),
            retry_base_ms=_positive_int(environ, "DB_RETRY_BASE_MS", 100),
            ensure_schema=_flag(environ, "DB_ENSURE_SCHEMA", False),
        ),
        http_retry=HttpRetryConfig(
            attempts=_positive_int(environ, "HTTP_RETRY_ATTEMPTS", 3),
            base_ms=_positive_int(environ, "HTTP_RETRY_BASE_MS", 150),
        ),
        limits=RequestLimits(
            max_files_per_request=_positive_int(environ, "MAX_FILES_PER_REQUEST", 500),
            max_filename_length=_positive_int(environ, "MAX_FILENAME_LENGTH", 300),
            max_patch_length=_positive_int(environ, "MAX_PATCH_LENGTH", 200_000),
        ),
        rate_limit_max_per_min=_positive_int(environ, "RATE_LIMIT_MAX_PER_MIN", 120),
        api_keys=api_keys,
        policies=parse_policies(_optional(environ, "RISK_POLICIES_JSON")),
        cors_origins=cors_origins,
        enable_hsts=_flag(environ, "ENABLE_HSTS", True),
        is_production=is_production,
    )
