"""Base model adapter contract."""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod

from modgate.core.errors import AdapterError, AdapterInvalidInput, AdapterUnavailable
from modgate.core.models import ContentItem, ModelResult
from modgate.util.logger import logger
from modgate.util.risk_scoring import clamp01


class ModelAdapter(ABC):
    """One classification backend.

    Subclasses implement ``_score`` and raise ``AdapterError`` subclasses for
    typed failures; ``classify`` turns both outcomes into a ``ModelResult``.
    """

    provider = "base"

    def __init__(self, model_id: str, model_name: str | None = None) -> None:
        self.model_id = model_id
        self.model_name = model_name or model_id

    @abstractmethod
    async def _score(self, item: ContentItem) -> tuple[dict[str, float], float]:
        """Return (category scores, confidence)."""

    async def classify(self, item: ContentItem) -> ModelResult:
        start = time.perf_counter()
        if not item.content.strip():
            return self.failure(AdapterInvalidInput("empty content"), start)
        try:
            scores, confidence = await self._score(item)
        except AdapterError as exc:
            return self.failure(exc, start)
        if not all(math.isfinite(float(value)) for value in (*scores.values(), confidence)):
            return self.failure(AdapterUnavailable("adapter returned non-finite scores"), start)
        return self.success(scores, confidence, start)

    def success(self, scores: dict[str, float], confidence: float, start: float) -> ModelResult:
        normalized = {str(name): round(clamp01(float(value)), 6) for name, value in scores.items()}
        return ModelResult(
            model_id=self.model_id,
            model_name=self.model_name,
            provider=self.provider,
            success=True,
            scores=normalized,
            confidence=round(clamp01(float(confidence)), 6),
            latency_ms=(time.perf_counter() - start) * 1000.0,
        )

    def failure(self, exc: AdapterError, start: float) -> ModelResult:
        logger.warning(
            "adapter failed model=%s provider=%s kind=%s error=%s",
            self.model_id,
            self.provider,
            exc.kind,
            exc.message,
        )
        return ModelResult(
            model_id=self.model_id,
            model_name=self.model_name,
            provider=self.provider,
            success=False,
            latency_ms=(time.perf_counter() - start) * 1000.0,
            error=exc.message,
            error_kind=exc.kind,
        )

    async def aclose(self) -> None:
        return None
