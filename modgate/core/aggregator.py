"""Fan-out to model adapters and worst-case-wins score merging."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from modgate.adapters.base import ModelAdapter
from modgate.core.errors import AdapterTimeout, AdapterUnavailable, AggregationDegraded
from modgate.core.models import CATEGORIES, ContentItem, ModelResult, ScoreVector
from modgate.util.logger import logger
from modgate.util.risk_scoring import clamp01, overall_risk


@dataclass(slots=True)
class Aggregate:
    scores: ScoreVector
    degraded: bool = False
    warnings: list[str] = field(default_factory=list)


class Aggregator:
    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = max(0.001, float(timeout_seconds))

    async def _classify_one(self, adapter: ModelAdapter, item: ContentItem) -> ModelResult:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(adapter.classify(item), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return adapter.failure(AdapterTimeout(f"no response within {self.timeout_seconds}s"), start)
        except Exception as exc:
            # 单个模型的意外异常不能拖垮其它模型
            logger.exception("adapter raised unexpectedly model=%s provider=%s", adapter.model_id, adapter.provider)
            return adapter.failure(AdapterUnavailable(f"adapter error: {exc.__class__.__name__}"), start)

    async def gather(self, adapters: list[ModelAdapter], item: ContentItem) -> list[ModelResult]:
        """Invoke every adapter concurrently; results keep the adapter order."""

        return list(await asyncio.gather(*(self._classify_one(adapter, item) for adapter in adapters)))

    @staticmethod
    def merge(results: list[ModelResult]) -> Aggregate:
        succeeded = [result for result in results if result.success]
        if not succeeded:
            logger.warning("aggregation degraded: no adapter succeeded attempted=%d", len(results))
            return Aggregate(scores=ScoreVector(), degraded=True, warnings=[AggregationDegraded.code])

        merged: dict[str, float] = {}
        for category in CATEGORIES:
            reported = [clamp01(float(result.scores[category])) for result in succeeded if category in result.scores]
            if reported:
                merged[category] = max(reported)

        warnings: list[str] = []
        covered = len(merged) / len(CATEGORIES)
        if covered < 1.0:
            warnings.append("categories_missing:" + ",".join(name for name in CATEGORIES if name not in merged))
        if len(succeeded) < len(results):
            warnings.append("adapters_failed:" + ",".join(result.model_id for result in results if not result.success))

        filled = {category: merged.get(category, 0.0) for category in CATEGORIES}
        confidence = sum(clamp01(result.confidence) for result in succeeded) / len(succeeded)
        vector = ScoreVector(
            **filled,
            overall_risk=overall_risk(filled),
            confidence=round(clamp01(confidence * covered), 6),
        )
        return Aggregate(scores=vector, warnings=warnings)
