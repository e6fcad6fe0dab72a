"""Reusable risk scoring helpers."""

from __future__ import annotations

from collections.abc import Mapping


# 严重类别取最大值，其余类别取均值，两部分按 0.6 / 0.4 加权
SEVERE_CATEGORIES: tuple[str, ...] = ("toxicity", "hate_speech", "threat", "violence")
MILD_CATEGORIES: tuple[str, ...] = ("profanity", "harassment", "spam", "adult_content")
SEVERE_WEIGHT = 0.6
MILD_WEIGHT = 0.4


def clamp01(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


def overall_risk(scores: Mapping[str, float]) -> float:
    severe = max(clamp01(float(scores.get(name, 0.0))) for name in SEVERE_CATEGORIES)
    mild = sum(clamp01(float(scores.get(name, 0.0))) for name in MILD_CATEGORIES) / len(MILD_CATEGORIES)
    return round(clamp01(severe * SEVERE_WEIGHT + mild * MILD_WEIGHT), 6)


def severity_band(score: float) -> str:
    """Display band for a single score (UI hint only, not used for decisions)."""

    if score >= 0.8:
        return "critical"
    if score >= 0.6:
        return "high"
    if score >= 0.3:
        return "medium"
    return "low"


def top_scores(scores: Mapping[str, float], limit: int = 3, floor: float = 0.1) -> list[tuple[str, float]]:
    ranked = sorted(
        ((name, float(value)) for name, value in scores.items() if float(value) > floor),
        key=lambda pair: pair[1],
        reverse=True,
    )
    return ranked[: max(0, limit)]
