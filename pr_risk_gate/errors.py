"""
错误类型（统一在 `main.py` 的 exception handler 里映射成 HTTP 响应）。

约定：
- 业务代码只抛这些异常，不直接构造 HTTP 响应
- 只有 `StorageError(retriable=True)` 会被 Resilient Store 重试
"""

from __future__ import annotations


class ConfigError(RuntimeError):
    """运行所需的配置缺失（例如没有 GITHUB_TOKEN 却要拉取 PR 文件）。"""


class ValidationError(ValueError):
    """请求体/参数不合法 -> 400，不重试。"""


class AuthError(Exception):
    """API key 缺失/无效 -> 401；角色或 repo 范围不足 -> 403。"""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class SignatureError(Exception):
    """Webhook 签名校验失败 -> 401。"""


class UpstreamError(RuntimeError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"GitHub API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class StorageError(RuntimeError):
    def __init__(self, message: str, retriable: bool) -> None:
        super().__init__(message)
        self.retriable = retriable


class RateLimitExceededError(RuntimeError):
    """超过固定窗口限流 -> 429。"""
