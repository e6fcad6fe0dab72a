"""Sensitivity level helpers for per-session threshold selection.

high 最严（阈值最低），low 最宽松（阈值最高），medium 为默认。
"""

from __future__ import annotations

from modgate.config.settings import settings


SUPPORTED_LEVELS: tuple[str, ...] = ("low", "medium", "high")
# 旧版演示页面还会发送 strict
_ALIASES = {"strict": "high", "lenient": "low", "default": "medium"}


def normalize_sensitivity(raw: str | None = None) -> str:
    candidate = (raw or settings.default_sensitivity or "medium").strip().lower()
    candidate = _ALIASES.get(candidate, candidate)
    if candidate in SUPPORTED_LEVELS:
        return candidate
    return "medium"


def is_supported_sensitivity(raw: str | None) -> bool:
    if raw is None:
        return True
    candidate = raw.strip().lower()
    return candidate in SUPPORTED_LEVELS or candidate in _ALIASES
