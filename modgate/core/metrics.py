"""Incremental per-session statistics."""

from __future__ import annotations

from collections import deque
from typing import Any

from modgate.core.models import ActionType, AnalysisRecord, SessionStatistics
from modgate.observability.metrics import emit_counter


class MetricsTracker:
    """O(1) running statistics plus a bounded buffer of recent records.

    Not thread-safe on its own; the owning session serializes ``record`` calls.
    """

    def __init__(self, history_size: int = 50) -> None:
        self._total = 0
        self._violations = 0
        self._actions = 0
        self._cache_hits = 0
        self._degraded = 0
        self._latency_total = 0.0
        self._confidence_total = 0.0
        self._action_counts: dict[str, int] = {}
        self._severity_counts: dict[str, int] = {}
        self._recent: deque[AnalysisRecord] = deque(maxlen=max(1, int(history_size)))

    def record(self, record: AnalysisRecord) -> None:
        action = record.action.action
        self._total += 1
        self._latency_total += record.processing_time_ms
        self._confidence_total += record.scores.confidence
        if action is not ActionType.ALLOW:
            self._violations += 1
        if record.action.enforced:
            self._actions += 1
        if record.cached:
            self._cache_hits += 1
        if record.degraded:
            self._degraded += 1
        self._action_counts[action.value] = self._action_counts.get(action.value, 0) + 1
        severity = record.action.severity.value
        self._severity_counts[severity] = self._severity_counts.get(severity, 0) + 1
        self._recent.append(record)
        emit_counter("moderation_analyzed", labels={"action": action.value, "cached": record.cached})

    def snapshot(self) -> SessionStatistics:
        total = self._total
        return SessionStatistics(
            total_analyzed=total,
            violations_detected=self._violations,
            actions_taken=self._actions,
            cache_hits=self._cache_hits,
            degraded_results=self._degraded,
            processing_time_total_ms=round(self._latency_total, 2),
            avg_processing_time_ms=round(self._latency_total / total, 2) if total else 0.0,
            avg_confidence=round(self._confidence_total / total, 6) if total else 0.0,
            violation_rate=self._violations / total if total else 0.0,
            action_counts=dict(self._action_counts),
            severity_counts=dict(self._severity_counts),
        )

    def recent(self) -> list[AnalysisRecord]:
        return list(self._recent)


def derived_metrics(stats: SessionStatistics) -> dict[str, Any]:
    """Rates and scores shown on the analytics panel."""

    total = stats.total_analyzed
    if total == 0:
        return {
            "avg_processing_time_ms": 0.0,
            "avg_confidence": 0.0,
            "violation_rate_percent": 0.0,
            "action_rate_percent": 0.0,
            "cache_hit_rate_percent": 0.0,
            "efficiency_score": 0.0,
        }
    speed_score = min(1.0, 1000.0 / max(100.0, stats.avg_processing_time_ms))
    effectiveness = stats.actions_taken / stats.violations_detected if stats.violations_detected else 1.0
    return {
        "avg_processing_time_ms": stats.avg_processing_time_ms,
        "avg_confidence": stats.avg_confidence,
        "violation_rate_percent": round(stats.violation_rate * 100.0, 2),
        "action_rate_percent": round(stats.actions_taken / total * 100.0, 2),
        "cache_hit_rate_percent": round(stats.cache_hits / total * 100.0, 2),
        "efficiency_score": round((speed_score + effectiveness) / 2.0, 2),
    }
