import asyncio

import pytest

from modgate.adapters.base import ModelAdapter
from modgate.adapters.heuristic import HeuristicModelAdapter, KeywordScorer
from modgate.adapters.registry import AdapterRegistry
from modgate.config.moderation_rules import _DEFAULT_RULES
from modgate.config.settings import settings
from modgate.core.errors import InvalidConfiguration, InvalidContent, SessionInactive, SessionNotFound
from modgate.core.models import ActionType, CATEGORIES, ContentItem, SessionConfig
from modgate.core.session_manager import SessionManager


class SlowAdapter(ModelAdapter):
    def __init__(self, model_id: str, delay: float, value: float = 0.1) -> None:
        super().__init__(model_id)
        self.delay = delay
        self.value = value
        self.calls = 0

    async def _score(self, item: ContentItem):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return {name: self.value for name in CATEGORIES}, 0.9


class FlakyAdapter(ModelAdapter):
    """Raises on ``boom`` content and stalls on ``stall`` content."""

    async def _score(self, item: ContentItem):
        if "boom" in item.content:
            raise RuntimeError("sdk bug")
        if "stall" in item.content:
            await asyncio.sleep(1.0)
        return {name: 0.2 for name in CATEGORIES}, 0.8


class CountingAdapter(ModelAdapter):
    def __init__(self, model_id: str, delay: float = 0.02) -> None:
        super().__init__(model_id)
        self.delay = delay
        self.current = 0
        self.peak = 0

    async def _score(self, item: ContentItem):
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.current -= 1
        return {name: 0.05 for name in CATEGORIES}, 0.9


def _heuristic_registry() -> AdapterRegistry:
    scorer = KeywordScorer(_DEFAULT_RULES)
    return AdapterRegistry(
        {
            "openai_moderation": HeuristicModelAdapter("openai_moderation", provider="openai", scorer=scorer),
            "custom_profanity": HeuristicModelAdapter("custom_profanity", provider="custom", scorer=scorer),
        }
    )


def _manager(registry: AdapterRegistry | None = None, **kwargs) -> SessionManager:
    return SessionManager(registry=registry or _heuristic_registry(), rules=_DEFAULT_RULES, **kwargs)


def _config(**overrides) -> SessionConfig:
    values = {"ai_models": ["openai_moderation", "custom_profanity"], "sensitivity": "medium"}
    values.update(overrides)
    return SessionConfig(**values)


@pytest.fixture(autouse=True)
def _no_audit_file(monkeypatch):
    monkeypatch.setattr(settings, "audit_log_path", "")


def test_start_rejects_invalid_configuration():
    manager = _manager()

    async def run_case():
        with pytest.raises(InvalidConfiguration):
            await manager.start("iv1", "u1", _config(ai_models=[]))
        with pytest.raises(InvalidConfiguration):
            await manager.start("iv1", "u1", _config(ai_models=["openai_moderation", "nope"]))
        with pytest.raises(InvalidConfiguration):
            await manager.start("iv1", "u1", _config(sensitivity="extreme"))
        with pytest.raises(InvalidContent):
            await manager.start("", "u1", _config())
        return await manager.start("iv1", "u1", _config(sensitivity="strict"))

    session = asyncio.run(run_case())
    assert session.session_id.startswith("mod_")
    assert session.config.sensitivity == "high"


def test_analyze_updates_statistics_and_history():
    manager = _manager()

    async def run_case():
        session = await manager.start("iv1", "u1", _config())
        clean = await manager.analyze(session.session_id, {"content": "Tell me about your last project.", "type": "text"})
        rude = await manager.analyze(session.session_id, {"content": "You are such an idiot! This is completely stupid!", "type": "chat"})
        return session, clean, rude

    session, clean, rude = asyncio.run(run_case())
    assert clean.action.action is ActionType.ALLOW
    assert rude.action.action is ActionType.WARN
    assert set(rude.to_payload()["ai_analysis"]) == {"openai_moderation", "custom_profanity"}

    stats = manager.statistics(session.session_id)
    assert stats.total_analyzed == 2
    assert stats.violations_detected == 1
    assert stats.violation_rate == 0.5
    assert [record.analysis_id for record in manager.history(session.session_id)] == [rude.analysis_id, clean.analysis_id]
    assert [record.analysis_id for record in manager.history(session.session_id, content_type="text")] == [clean.analysis_id]
    assert [record.analysis_id for record in manager.actions(session.session_id, action_type="warn")] == [rude.analysis_id]


def test_empty_content_rejected():
    manager = _manager()

    async def run_case():
        session = await manager.start("iv1", "u1", _config())
        with pytest.raises(InvalidContent):
            await manager.analyze(session.session_id, {"content": "   "})
        return session

    session = asyncio.run(run_case())
    assert manager.statistics(session.session_id).total_analyzed == 0


def test_all_adapters_timing_out_yields_degraded_allow():
    registry = AdapterRegistry({"slow_a": SlowAdapter("slow_a", delay=1.0), "slow_b": SlowAdapter("slow_b", delay=1.0)})
    manager = _manager(registry, adapter_timeout_seconds=0.05)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["slow_a", "slow_b"]))
        record = await manager.analyze(session.session_id, {"content": "hello"})
        return session, record

    session, record = asyncio.run(run_case())
    assert record.degraded is True
    assert record.action.action is ActionType.ALLOW
    assert record.scores.overall_risk == 0.0
    assert all(result.error_kind == "timeout" for result in record.model_results)
    stats = manager.statistics(session.session_id)
    assert stats.total_analyzed == 1
    assert stats.degraded_results == 1


def test_cached_result_is_reused():
    adapter = SlowAdapter("stub", delay=0.0, value=0.2)
    manager = _manager(AdapterRegistry({"stub": adapter}))

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["stub"], cache_results=True))
        first = await manager.analyze(session.session_id, {"content": "Same   text", "content_id": "a"})
        second = await manager.analyze(session.session_id, {"content": "same text", "content_id": "b"})
        return session, first, second

    session, first, second = asyncio.run(run_case())
    assert adapter.calls == 1
    assert first.cached is False
    assert second.cached is True
    assert second.analysis_id != first.analysis_id
    assert second.item.content_id == "b"
    assert second.scores == first.scores
    assert [result.latency_ms for result in second.model_results] == [result.latency_ms for result in first.model_results]
    stats = manager.statistics(session.session_id)
    assert stats.total_analyzed == 2
    assert stats.cache_hits == 1


@pytest.mark.asyncio
async def test_single_model_mode_uses_first_adapter_only():
    manager = _manager()
    session = await manager.start("iv1", "u1", _config(multi_model_analysis=False))
    record = await manager.analyze(session.session_id, {"content": "damn"})
    assert [result.model_id for result in record.model_results] == ["openai_moderation"]


def test_filter_action_masks_matched_terms():
    manager = _manager()

    async def run_case():
        session = await manager.start("iv1", "u1", _config(user_notifications=True))
        return await manager.analyze(
            session.session_id,
            {"content": "BUY NOW! LIMITED TIME OFFER! CLICK HERE FOR AMAZING DEALS!!!", "type": "chat"},
        )

    record = asyncio.run(run_case())
    assert record.action.action is ActionType.FILTER
    assert record.filtered_content == "[FILTERED]! [FILTERED] OFFER! [FILTERED] FOR AMAZING DEALS!!!"
    assert record.user_notified is True


def test_batch_returns_one_entry_per_item():
    manager = _manager(batch_concurrency=2)
    items = [
        {"content": "Hello there", "content_id": "x1"},
        {"content": ""},
        {"content": "I will hurt you and destroy everything you care about!"},
        {"content": "Nice answer", "type": "comment"},
    ]

    async def run_case():
        session = await manager.start("iv1", "u1", _config())
        return session, await manager.batch_analyze(session.session_id, items)

    session, outcome = asyncio.run(run_case())
    assert [entry.index for entry in outcome.entries] == [0, 1, 2, 3]
    assert outcome.entries[0].content_id == "x1"
    assert outcome.entries[1].record is None
    assert outcome.entries[1].to_payload()["result"]["success"] is False
    summary = outcome.summary()
    assert summary["succeeded"] == 3
    assert summary["failed"] == 1
    assert summary["action_counts"]["block"] == 1
    assert manager.statistics(session.session_id).total_analyzed == 3


def test_double_stop_reports_unchanged_statistics():
    manager = _manager()

    async def run_case():
        session = await manager.start("iv1", "u1", _config())
        await manager.analyze(session.session_id, {"content": "hello"})
        final = await manager.stop(session.session_id)
        with pytest.raises(SessionInactive) as excinfo:
            await manager.stop(session.session_id)
        with pytest.raises(SessionInactive):
            await manager.analyze(session.session_id, {"content": "hello again"})
        return session, final, excinfo.value

    session, final, error = asyncio.run(run_case())
    assert final.total_analyzed == 1
    assert error.statistics == final.model_dump()
    assert manager.describe(session.session_id)["status"] == "stopped"


def test_stop_waits_for_inflight_analysis():
    manager = _manager(AdapterRegistry({"slow": SlowAdapter("slow", delay=0.2)}), adapter_timeout_seconds=2.0)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["slow"]))
        pending = asyncio.create_task(manager.analyze(session.session_id, {"content": "in flight"}))
        await asyncio.sleep(0.05)
        final = await manager.stop(session.session_id)
        record = await pending
        return final, record

    final, record = asyncio.run(run_case())
    assert record.degraded is False
    assert final.total_analyzed == 1


def test_unknown_session():
    manager = _manager()

    async def run_case():
        with pytest.raises(SessionNotFound):
            await manager.analyze("mod_missing", {"content": "hello"})
        with pytest.raises(SessionNotFound):
            await manager.stop("mod_missing")

    asyncio.run(run_case())
    with pytest.raises(SessionNotFound):
        manager.statistics("mod_missing")


def test_crashing_adapter_does_not_fail_analysis():
    registry = AdapterRegistry({"flaky": FlakyAdapter("flaky"), "steady": SlowAdapter("steady", delay=0.0, value=0.3)})
    manager = _manager(registry)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["flaky", "steady"]))
        record = await manager.analyze(session.session_id, {"content": "boom goes the answer"})
        return session, record

    session, record = asyncio.run(run_case())
    flaky, steady = record.model_results
    assert flaky.error_kind == "adapter_unavailable"
    assert steady.success is True
    assert record.degraded is False
    assert record.scores.toxicity == 0.3
    assert "adapters_failed:flaky" in record.warnings
    assert manager.statistics(session.session_id).total_analyzed == 1


def test_batch_survives_failing_and_stalled_adapters():
    registry = AdapterRegistry({"flaky": FlakyAdapter("flaky"), "steady": SlowAdapter("steady", delay=0.0)})
    manager = _manager(registry, adapter_timeout_seconds=0.05, batch_concurrency=3)
    items = [
        {"content": "fine one"},
        {"content": "boom"},
        {"content": "stall here"},
        {"content": "fine two"},
        {"content": "boom again"},
    ]

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["flaky", "steady"]))
        return session, await manager.batch_analyze(session.session_id, items)

    session, outcome = asyncio.run(run_case())
    assert len(outcome.entries) == len(items)
    assert all(entry.record is not None for entry in outcome.entries)
    kinds = [entry.record.model_results[0].error_kind for entry in outcome.entries]
    assert kinds == [None, "adapter_unavailable", "timeout", None, "adapter_unavailable"]
    assert all(entry.record.degraded is False for entry in outcome.entries)
    assert manager.statistics(session.session_id).total_analyzed == len(items)


def test_batch_only_failing_adapter_yields_degraded_entries():
    manager = _manager(AdapterRegistry({"flaky": FlakyAdapter("flaky")}), adapter_timeout_seconds=0.05)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["flaky"]))
        return await manager.batch_analyze(session.session_id, [{"content": "boom"}, {"content": "ok"}, {"content": "stall"}])

    outcome = asyncio.run(run_case())
    assert [entry.record.degraded for entry in outcome.entries] == [True, False, True]
    assert outcome.summary()["degraded"] == 2


def test_batch_respects_concurrency_limit():
    adapter = CountingAdapter("counting")
    manager = _manager(AdapterRegistry({"counting": adapter}), batch_concurrency=2)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["counting"]))
        items = [{"content": f"item number {index}"} for index in range(10)]
        return await manager.batch_analyze(session.session_id, items)

    outcome = asyncio.run(run_case())
    assert len(outcome.entries) == 10
    assert adapter.peak == 2


def test_second_stop_during_drain_gets_final_statistics():
    manager = _manager(AdapterRegistry({"slow": SlowAdapter("slow", delay=0.2)}), adapter_timeout_seconds=2.0)

    async def run_case():
        session = await manager.start("iv1", "u1", _config(ai_models=["slow"]))
        pending = asyncio.create_task(manager.analyze(session.session_id, {"content": "in flight"}))
        await asyncio.sleep(0.05)
        first = asyncio.create_task(manager.stop(session.session_id))
        await asyncio.sleep(0.02)
        with pytest.raises(SessionInactive) as excinfo:
            await manager.stop(session.session_id)
        return await first, excinfo.value, await pending

    final, error, record = asyncio.run(run_case())
    assert final.total_analyzed == 1
    assert error.statistics == final.model_dump()
    assert record.degraded is False


def test_export_json_and_csv():
    manager = _manager()

    async def run_case():
        session = await manager.start("iv1", "u1", _config())
        await manager.analyze(session.session_id, {"content": "Hello there", "content_id": "x1"})
        await manager.analyze(session.session_id, {"content": "I will hurt you and destroy everything you care about!", "content_id": "x2"})
        return session

    session = asyncio.run(run_case())
    document = manager.export(session.session_id, "json")
    assert document["total_items"] == 2
    assert [item["content_id"] for item in document["analysis_results"]] == ["x1", "x2"]
    assert [item["content_id"] for item in document["actions"]] == ["x2"]

    rows = manager.export(session.session_id, "CSV").strip().split("\n")
    assert rows[0].split(",")[:3] == ["analysis_id", "content_id", "content_type"]
    assert [row.split(",")[1] for row in rows[1:]] == ["x1", "x2"]

    with pytest.raises(InvalidContent):
        manager.export(session.session_id, "xml")
    with pytest.raises(SessionNotFound):
        manager.export("mod_missing")
