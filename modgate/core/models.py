"""Moderation data models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from modgate.util.risk_scoring import severity_band, top_scores


CATEGORIES: tuple[str, ...] = (
    "toxicity",
    "profanity",
    "hate_speech",
    "harassment",
    "threat",
    "spam",
    "adult_content",
    "violence",
)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class ActionType(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    FILTER = "filter"
    BLOCK = "block"
    QUARANTINE = "quarantine"
    ESCALATE = "escalate"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


class SessionConfig(BaseModel):
    mode: str = "auto"
    sensitivity: str = "medium"
    auto_action: bool = True
    real_time: bool = True
    ai_models: list[str] = Field(default_factory=list)
    multi_model_analysis: bool = True
    cache_results: bool = False
    user_notifications: bool = False


class ContentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_id: str
    content: str
    content_type: str = "text"
    metadata: dict[str, Any] = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=utc_now)


class ScoreVector(BaseModel):
    model_config = ConfigDict(frozen=True)

    toxicity: float = Field(default=0.0, ge=0.0, le=1.0)
    profanity: float = Field(default=0.0, ge=0.0, le=1.0)
    hate_speech: float = Field(default=0.0, ge=0.0, le=1.0)
    harassment: float = Field(default=0.0, ge=0.0, le=1.0)
    threat: float = Field(default=0.0, ge=0.0, le=1.0)
    spam: float = Field(default=0.0, ge=0.0, le=1.0)
    adult_content: float = Field(default=0.0, ge=0.0, le=1.0)
    violence: float = Field(default=0.0, ge=0.0, le=1.0)
    overall_risk: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    def categories(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in CATEGORIES}


class ModelResult(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    model_name: str
    provider: str
    success: bool
    scores: dict[str, float] = Field(default_factory=dict)
    confidence: float = 0.0
    latency_ms: float = 0.0
    error: str | None = None
    error_kind: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_name,
            "provider": self.provider,
            "success": self.success,
            "processing_time_ms": round(self.latency_ms, 2),
        }
        if self.success:
            payload["scores"] = dict(self.scores)
            payload["confidence"] = self.confidence
            payload["top_scores"] = [
                {"category": name, "score": value, "band": severity_band(value)}
                for name, value in top_scores(self.scores)
            ]
        else:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: ActionType = ActionType.ALLOW
    reason: str = "no violations detected"
    severity: Severity = Severity.LOW
    confidence: float = 0.0
    enforced: bool = False
    triggered_category: str | None = None
    triggered_score: float | None = None


class AnalysisRecord(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    analysis_id: str
    session_id: str
    item: ContentItem
    model_results: list[ModelResult] = Field(default_factory=list)
    scores: ScoreVector
    action: Action
    processing_time_ms: float = 0.0
    degraded: bool = False
    cached: bool = False
    warnings: list[str] = Field(default_factory=list)
    filtered_content: str | None = None
    user_notified: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    def to_payload(self) -> dict[str, Any]:
        """Shape consumed by the browser client."""

        return {
            "analysis_id": self.analysis_id,
            "session_id": self.session_id,
            "content_id": self.item.content_id,
            "content_type": self.item.content_type,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "scores": self.scores.model_dump(),
            "final_action": self.action.model_dump(mode="json"),
            "ai_analysis": {result.model_id: result.to_payload() for result in self.model_results},
            "degraded": self.degraded,
            "cached": self.cached,
            "warnings": list(self.warnings),
            "filtered_content": self.filtered_content,
            "user_notified": self.user_notified,
            "timestamp": self.created_at.isoformat(),
        }


class SessionStatistics(BaseModel):
    total_analyzed: int = 0
    violations_detected: int = 0
    actions_taken: int = 0
    cache_hits: int = 0
    degraded_results: int = 0
    processing_time_total_ms: float = 0.0
    avg_processing_time_ms: float = 0.0
    avg_confidence: float = 0.0
    violation_rate: float = 0.0
    action_counts: dict[str, int] = Field(default_factory=dict)
    severity_counts: dict[str, int] = Field(default_factory=dict)
