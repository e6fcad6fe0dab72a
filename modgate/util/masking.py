"""Text masking helpers for filtered content and log excerpts."""

from __future__ import annotations

import re
from collections.abc import Iterable


def mask_terms(text: str, terms: Iterable[str], replace_with: str = "[FILTERED]") -> str:
    """Replace every whole-word occurrence of ``terms`` (case-insensitive)."""

    # 先替换长词，避免 "shut up" 被 "shut" 之类的短词拆开
    ordered = sorted({term.strip() for term in terms if term and term.strip()}, key=len, reverse=True)
    masked = text
    for term in ordered:
        masked = re.sub(rf"\b{re.escape(term)}\b", replace_with, masked, flags=re.IGNORECASE)
    return masked


def excerpt_for_log(value: str, limit: int = 48) -> str:
    """Single-line, length-capped excerpt safe for log output."""

    normalized = re.sub(r"\s+", " ", value).strip()
    if len(normalized) <= limit:
        return normalized
    return normalized[: max(0, limit - 3)] + "..."
