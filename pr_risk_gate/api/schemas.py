"""
`POST /api/analyze` 请求体校验。

不直接用 FastAPI 的 body 参数：校验失败要返回 400 + 一句可读的错误（而不是 422 的字段列表）。
"""

from __future__ import annotations

import re
import unicodedata

from pydantic import BaseModel, Field

from pr_risk_gate.config import RequestLimits
from pr_risk_gate.errors import ValidationError
from pr_risk_gate.risk.models import ChangedFile

REPO_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
OWNER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,100}$")


class AnalyzeRequest(BaseModel):
    repo: str
    owner: str | None = None
    pr_number: int = Field(alias="prNumber")
    files: list[ChangedFile]


def is_valid_filename(filename: str, max_length: int) -> bool:
    """拒绝绝对路径、`~`、反斜杠、控制字符和 `.`/`..`/空路径段。"""
    if not filename or len(filename) > max_length:
        return False
    if "\\" in filename or "\0" in filename:
        return False
    if filename.startswith("/") or filename.startswith("~"):
        return False
    if any(unicodedata.category(ch).startswith("C") for ch in filename):
        return False
    return all(segment not in ("", ".", "..") for segment in filename.split("/"))


def validate_analyze_request(body: object, limits: RequestLimits) -> AnalyzeRequest:
    if not isinstance(body, dict):
        raise ValidationError("invalid request body")

    repo = body.get("repo")
    pr_number = body.get("prNumber")
    files = body.get("files")
    if not repo or not pr_number or not isinstance(files, list) or not files:
        raise ValidationError("repo, prNumber, and non-empty files are required")

    if not isinstance(repo, str) or not REPO_NAME_PATTERN.match(repo):
        raise ValidationError("repo must match [A-Za-z0-9._-] and be <= 100 chars")

    # JSON 数字 5.0 与 5 等价
    if isinstance(pr_number, float) and pr_number.is_integer():
        pr_number = int(pr_number)
    if isinstance(pr_number, bool) or not isinstance(pr_number, int) or pr_number <= 0:
        raise ValidationError("prNumber must be a positive integer")

    owner = body.get("owner")
    if owner is not None and (not isinstance(owner, str) or not OWNER_NAME_PATTERN.match(owner)):
        raise ValidationError("owner must match [A-Za-z0-9._-] and be <= 100 chars")

    if len(files) > limits.max_files_per_request:
        raise ValidationError(f"files exceeds max allowed ({limits.max_files_per_request})")

    changed: list[ChangedFile] = []
    for file in files:
        if not isinstance(file, dict):
            raise ValidationError("each file must include a valid, safe filename")
        filename = file.get("filename")
        if not isinstance(filename, str) or not is_valid_filename(filename, limits.max_filename_length):
            raise ValidationError("each file must include a valid, safe filename")
        patch = file.get("patch")
        if patch is not None and (not isinstance(patch, str) or len(patch) > limits.max_patch_length):
            raise ValidationError(f"patch must be a string <= {limits.max_patch_length} chars")
        status = file.get("status")
        changed.append(
            ChangedFile(
                filename=filename,
                status=status if isinstance(status, str) else None,
                patch=patch,
            )
        )

    return AnalyzeRequest(repo=repo, owner=owner, prNumber=pr_number, files=changed)
