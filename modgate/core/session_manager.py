"""Moderation session lifecycle and analysis pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from modgate.adapters.base import ModelAdapter
from modgate.adapters.heuristic import KeywordScorer
from modgate.adapters.registry import AdapterRegistry
from modgate.config.moderation_rules import load_moderation_rules
from modgate.config.sensitivity import is_supported_sensitivity, normalize_sensitivity
from modgate.config.settings import settings
from modgate.core.aggregator import Aggregator
from modgate.core.audit import action_event, write_audit
from modgate.core.cache import ResultCache, fingerprint
from modgate.core.errors import (
    InternalError,
    InvalidConfiguration,
    InvalidContent,
    ModGateError,
    SessionInactive,
    SessionNotFound,
)
from modgate.core.export import EXPORT_FORMATS, export_document, records_to_csv
from modgate.core.metrics import MetricsTracker
from modgate.core.models import (
    CATEGORIES,
    Action,
    ActionType,
    AnalysisRecord,
    ContentItem,
    ScoreVector,
    SessionConfig,
    SessionStatistics,
    SessionStatus,
    utc_now,
)
from modgate.observability.logging import log_event
from modgate.policies.policy_engine import PolicyEngine
from modgate.util.logger import logger
from modgate.util.masking import excerpt_for_log, mask_terms


@dataclass(slots=True)
class Session:
    session_id: str
    interview_id: str
    user_id: str
    config: SessionConfig
    adapters: list[ModelAdapter]
    metrics: MetricsTracker
    cache: ResultCache | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    stopped_at: datetime | None = None
    final_statistics: SessionStatistics | None = None
    inflight: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    drained: asyncio.Condition = field(init=False)

    def __post_init__(self) -> None:
        self.drained = asyncio.Condition(self.lock)

    def statistics(self) -> SessionStatistics:
        if self.final_statistics is not None:
            return self.final_statistics
        return self.metrics.snapshot()

    def info(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "interview_id": self.interview_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "moderation_mode": self.config.mode,
            "sensitivity_level": self.config.sensitivity,
            "auto_action_enabled": self.config.auto_action,
            "real_time_enabled": self.config.real_time,
            "ai_models_enabled": list(self.config.ai_models),
            "active_models": [adapter.model_id for adapter in self.adapters],
            "settings": {
                "multi_model_analysis": self.config.multi_model_analysis,
                "cache_results": self.config.cache_results,
                "user_notifications": self.config.user_notifications,
            },
            "created_at": self.created_at.isoformat(),
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
        }


@dataclass(slots=True)
class BatchEntry:
    index: int
    content_id: str
    record: AnalysisRecord | None = None
    error: ModGateError | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.record is not None:
            result: dict[str, Any] = {"success": True, "analysis": self.record.to_payload()}
        else:
            error = self.error or InternalError()
            result = {"success": False, "error": error.message, "error_code": error.code}
        return {"index": self.index, "content_id": self.content_id, "result": result}


@dataclass(slots=True)
class BatchOutcome:
    entries: list[BatchEntry]

    def summary(self) -> dict[str, Any]:
        records = [entry.record for entry in self.entries if entry.record is not None]
        averages = {name: 0.0 for name in (*CATEGORIES, "overall_risk", "confidence")}
        action_counts: dict[str, int] = {}
        for record in records:
            dumped = record.scores.model_dump()
            for name in averages:
                averages[name] += dumped[name]
            action_counts[record.action.action.value] = action_counts.get(record.action.action.value, 0) + 1
        if records:
            averages = {name: round(total / len(records), 6) for name, total in averages.items()}
        return {
            "succeeded": len(records),
            "failed": len(self.entries) - len(records),
            "average_scores": averages,
            "action_counts": action_counts,
            "degraded": sum(1 for record in records if record.degraded),
            "cached": sum(1 for record in records if record.cached),
        }


def build_content_item(data: dict[str, Any] | ContentItem, index: int | None = None) -> ContentItem:
    """Turn a client ``content_data`` payload into a ContentItem."""

    if isinstance(data, ContentItem):
        return data
    if not isinstance(data, dict):
        raise InvalidContent("content item must be an object")
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise InvalidContent("content is required")
    if len(content) > settings.max_content_length:
        raise InvalidContent(f"content exceeds {settings.max_content_length} characters")
    default_id = f"item_{index}" if index is not None else f"content_{uuid4().hex[:12]}"
    metadata = data.get("metadata") or {}
    try:
        return ContentItem(
            content_id=str(data.get("content_id") or default_id),
            content=content,
            content_type=str(data.get("type") or data.get("content_type") or "text"),
            metadata=metadata,
        )
    except ValidationError as exc:
        raise InvalidContent(f"invalid content item: {exc.errors()[0].get('msg', 'validation failed')}") from exc


class SessionManager:
    def __init__(
        self,
        *,
        registry: AdapterRegistry | None = None,
        policy: PolicyEngine | None = None,
        rules: dict[str, Any] | None = None,
        adapter_timeout_seconds: float | None = None,
        batch_concurrency: int | None = None,
        history_size: int | None = None,
        cache_max_entries: int | None = None,
        archive_max_sessions: int | None = None,
    ) -> None:
        source = rules if rules is not None else load_moderation_rules()
        self.registry = registry or AdapterRegistry.from_rules(source)
        self.policy = policy or PolicyEngine.from_rules(source)
        self.aggregator = Aggregator(timeout_seconds=adapter_timeout_seconds or settings.adapter_timeout_seconds)
        self._scorer = KeywordScorer(source)
        self._replace_with = str(source.get("filtering", {}).get("replace_with", "[FILTERED]"))
        self.batch_concurrency = max(1, int(batch_concurrency or settings.batch_concurrency))
        self.history_size = int(history_size or settings.history_size)
        self.cache_max_entries = int(cache_max_entries or settings.cache_max_entries)
        self.archive_max_sessions = max(1, int(archive_max_sessions or settings.archive_max_sessions))
        self._sessions: dict[str, Session] = {}
        self._archive: OrderedDict[str, Session] = OrderedDict()

    # ------------------------------------------------------------------ lifecycle

    async def start(self, interview_id: str, user_id: str | int, config: SessionConfig) -> Session:
        interview = str(interview_id or "").strip()
        owner = str(user_id or "").strip()
        if not interview or not owner or owner == "0":
            raise InvalidContent("interview_id and user_id are required")

        model_ids = list(dict.fromkeys(str(item).strip() for item in config.ai_models if str(item).strip()))
        if not model_ids:
            raise InvalidConfiguration("at least one ai model must be enabled")
        if not is_supported_sensitivity(config.sensitivity):
            raise InvalidConfiguration(f"unsupported sensitivity: {config.sensitivity}")

        adapters = self.registry.resolve(model_ids)
        if not config.multi_model_analysis:
            adapters = adapters[:1]
        normalized = config.model_copy(
            update={"ai_models": model_ids, "sensitivity": normalize_sensitivity(config.sensitivity)}
        )

        session = Session(
            session_id=f"mod_{uuid4().hex}",
            interview_id=interview,
            user_id=owner,
            config=normalized,
            adapters=adapters,
            metrics=MetricsTracker(history_size=self.history_size),
            cache=ResultCache(self.cache_max_entries) if normalized.cache_results else None,
        )
        self._sessions[session.session_id] = session
        log_event(
            "session_started",
            session_id=session.session_id,
            interview_id=interview,
            models=[adapter.model_id for adapter in adapters],
            sensitivity=normalized.sensitivity,
            auto_action=normalized.auto_action,
            cache=normalized.cache_results,
        )
        return session

    async def stop(self, session_id: str) -> SessionStatistics:
        session = self._sessions.get(session_id)
        if session is None:
            archived = self._archive.get(session_id)
            if archived is not None:
                raise SessionInactive("session already stopped", statistics=archived.statistics().model_dump())
            raise SessionNotFound(f"session not found: {session_id}")

        async with session.lock:
            if session.status is SessionStatus.STOPPED:
                # 另一个 stop 仍在等待在途分析，等它拿到最终快照
                await session.drained.wait_for(lambda: session.final_statistics is not None)
                raise SessionInactive("session already stopped", statistics=session.final_statistics.model_dump())
            session.status = SessionStatus.STOPPED
            session.stopped_at = utc_now()
            if session.inflight:
                logger.info("session stop waiting for in-flight analyses session_id=%s inflight=%d", session_id, session.inflight)
            # 已派发的分析允许完成，计入最终统计
            await session.drained.wait_for(lambda: session.inflight == 0)
            session.final_statistics = session.metrics.snapshot()
            session.drained.notify_all()
            if session.cache is not None:
                session.cache.clear()

        self._sessions.pop(session_id, None)
        self._archive[session_id] = session
        while len(self._archive) > self.archive_max_sessions:
            self._archive.popitem(last=False)

        final = session.final_statistics
        log_event(
            "session_stopped",
            session_id=session_id,
            total_analyzed=final.total_analyzed,
            violations_detected=final.violations_detected,
            actions_taken=final.actions_taken,
        )
        return final

    async def aclose(self) -> None:
        await self.registry.aclose()

    # ------------------------------------------------------------------ lookups

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id) or self._archive.get(session_id)
        if session is None:
            raise SessionNotFound(f"session not found: {session_id}")
        return session

    def _active_session(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session.status is not SessionStatus.ACTIVE:
            raise SessionInactive("session is not active", statistics=session.statistics().model_dump())
        return session

    def statistics(self, session_id: str) -> SessionStatistics:
        return self.get(session_id).statistics()

    def describe(self, session_id: str) -> dict[str, Any]:
        return self.get(session_id).info()

    def export(self, session_id: str, export_format: str = "json") -> dict[str, Any] | str:
        """JSON document or CSV text covering the retained history, oldest first."""

        fmt = (export_format or "json").strip().lower()
        if fmt not in EXPORT_FORMATS:
            raise InvalidContent(f"unsupported export format: {export_format}")
        session = self.get(session_id)
        records = session.metrics.recent()
        if fmt == "csv":
            return records_to_csv(records)
        return export_document(session.info(), session.statistics().model_dump(), records)

    def history(
        self,
        session_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        content_type: str | None = None,
    ) -> list[AnalysisRecord]:
        records = list(reversed(self.get(session_id).metrics.recent()))
        if content_type:
            records = [record for record in records if record.item.content_type == content_type]
        start = max(0, int(offset))
        return records[start : start + max(0, int(limit))]

    def actions(
        self,
        session_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        action_type: str | None = None,
    ) -> list[AnalysisRecord]:
        records = [
            record
            for record in reversed(self.get(session_id).metrics.recent())
            if record.action.action is not ActionType.ALLOW
        ]
        if action_type:
            records = [record for record in records if record.action.action.value == action_type]
        start = max(0, int(offset))
        return records[start : start + max(0, int(limit))]

    # ------------------------------------------------------------------ analysis

    async def analyze(self, session_id: str, content: dict[str, Any] | ContentItem) -> AnalysisRecord:
        session = self._active_session(session_id)
        item = build_content_item(content)

        async with session.lock:
            if session.status is not SessionStatus.ACTIVE:
                raise SessionInactive("session is not active", statistics=session.statistics().model_dump())
            session.inflight += 1

        start = time.perf_counter()
        try:
            try:
                record, cache_key = await self._run_pipeline(session, item, start)
            except Exception as exc:
                logger.exception("analysis pipeline failed session_id=%s content_id=%s", session_id, item.content_id)
                # 已开始的分析不能从统计中消失，记一条降级结果
                failed = self._degraded_record(session, item, start, warning=InternalError.code)
                async with session.lock:
                    session.metrics.record(failed)
                raise InternalError("content analysis failed") from exc

            async with session.lock:
                session.metrics.record(record)
                if cache_key is not None and session.cache is not None and session.final_statistics is None:
                    session.cache.put(cache_key, record)
        finally:
            # 取消时也要归还计数，否则 stop 会一直等待
            async with session.lock:
                session.inflight -= 1
                session.drained.notify_all()

        if record.action.enforced:
            write_audit(action_event(record))
        logger.info(
            "content analyzed session_id=%s content_id=%s action=%s severity=%s risk=%.4f cached=%s degraded=%s ms=%.2f text=%s",
            session_id,
            item.content_id,
            record.action.action.value,
            record.action.severity.value,
            record.scores.overall_risk,
            record.cached,
            record.degraded,
            record.processing_time_ms,
            excerpt_for_log(item.content),
        )
        return record

    async def _run_pipeline(
        self,
        session: Session,
        item: ContentItem,
        start: float,
    ) -> tuple[AnalysisRecord, str | None]:
        cache_key: str | None = None
        if session.cache is not None:
            cache_key = fingerprint(item.content, item.content_type, [adapter.model_id for adapter in session.adapters])
            async with session.lock:
                hit = session.cache.get(cache_key)
            if hit is not None:
                return self._from_cache(session, item, hit, start), None

        results = await self.aggregator.gather(session.adapters, item)
        aggregate = Aggregator.merge(results)
        action = self.policy.decide(aggregate.scores, session.config.sensitivity, session.config.auto_action)
        record = AnalysisRecord(
            analysis_id=f"analysis_{uuid4().hex}",
            session_id=session.session_id,
            item=item,
            model_results=results,
            scores=aggregate.scores,
            action=action,
            processing_time_ms=(time.perf_counter() - start) * 1000.0,
            degraded=aggregate.degraded,
            warnings=aggregate.warnings,
            filtered_content=self._filtered_content(item, action),
            user_notified=session.config.user_notifications and action.enforced,
        )
        return record, cache_key

    def _filtered_content(self, item: ContentItem, action: Action) -> str | None:
        if action.action is not ActionType.FILTER:
            return None
        return mask_terms(item.content, self._scorer.matched_terms(item.content), self._replace_with)

    @staticmethod
    def _from_cache(session: Session, item: ContentItem, hit: AnalysisRecord, start: float) -> AnalysisRecord:
        filtered = hit.filtered_content
        if filtered is not None and item.content != hit.item.content:
            filtered = None
        return hit.model_copy(
            update={
                "analysis_id": f"analysis_{uuid4().hex}",
                "session_id": session.session_id,
                "item": item,
                "cached": True,
                "processing_time_ms": (time.perf_counter() - start) * 1000.0,
                "filtered_content": filtered,
                "created_at": utc_now(),
            }
        )

    @staticmethod
    def _degraded_record(session: Session, item: ContentItem, start: float, warning: str) -> AnalysisRecord:
        return AnalysisRecord(
            analysis_id=f"analysis_{uuid4().hex}",
            session_id=session.session_id,
            item=item,
            scores=ScoreVector(),
            action=Action(reason="analysis failed, no evidence"),
            processing_time_ms=(time.perf_counter() - start) * 1000.0,
            degraded=True,
            warnings=[warning],
        )

    async def batch_analyze(self, session_id: str, items: list[dict[str, Any] | ContentItem]) -> BatchOutcome:
        self._active_session(session_id)
        if not isinstance(items, list):
            raise InvalidContent("content_items must be an array")
        if len(items) > settings.max_batch_items:
            raise InvalidContent(f"batch exceeds {settings.max_batch_items} items")

        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def run_one(index: int, data: dict[str, Any] | ContentItem) -> BatchEntry:
            if isinstance(data, ContentItem):
                content_id = data.content_id
            elif isinstance(data, dict):
                content_id = str(data.get("content_id") or f"item_{index}")
            else:
                content_id = f"item_{index}"
            async with semaphore:
                try:
                    record = await self.analyze(session_id, build_content_item(data, index))
                except ModGateError as exc:
                    logger.warning("batch item failed session_id=%s index=%d error=%s", session_id, index, exc.message)
                    return BatchEntry(index=index, content_id=content_id, error=exc)
            return BatchEntry(index=index, content_id=content_id, record=record)

        entries = await asyncio.gather(*(run_one(index, data) for index, data in enumerate(items)))
        outcome = BatchOutcome(entries=list(entries))
        logger.info(
            "batch analyzed session_id=%s total=%d failed=%d",
            session_id,
            len(outcome.entries),
            outcome.summary()["failed"],
        )
        return outcome
