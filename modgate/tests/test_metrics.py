from modgate.core.metrics import MetricsTracker, derived_metrics
from modgate.core.models import Action, ActionType, AnalysisRecord, ContentItem, ScoreVector, Severity


def _record(action: ActionType, *, enforced: bool = True, cached: bool = False, ms: float = 100.0) -> AnalysisRecord:
    return AnalysisRecord(
        analysis_id=f"a-{action.value}-{ms}",
        session_id="s1",
        item=ContentItem(content_id="c", content="text"),
        scores=ScoreVector(confidence=0.8),
        action=Action(action=action, severity=Severity.MEDIUM, enforced=enforced and action is not ActionType.ALLOW),
        processing_time_ms=ms,
        cached=cached,
    )


def test_running_statistics():
    tracker = MetricsTracker(history_size=3)
    tracker.record(_record(ActionType.ALLOW, ms=50.0))
    tracker.record(_record(ActionType.WARN, ms=150.0))
    tracker.record(_record(ActionType.BLOCK, enforced=False, cached=True, ms=100.0))
    tracker.record(_record(ActionType.ALLOW, ms=100.0))

    stats = tracker.snapshot()
    assert stats.total_analyzed == 4
    assert stats.violations_detected == 2
    assert stats.violations_detected <= stats.total_analyzed
    assert stats.actions_taken == 1
    assert stats.cache_hits == 1
    assert stats.avg_processing_time_ms == 100.0
    assert stats.violation_rate == 0.5
    assert stats.action_counts == {"allow": 2, "warn": 1, "block": 1}
    assert len(tracker.recent()) == 3


def test_derived_metrics_for_empty_session():
    metrics = derived_metrics(MetricsTracker().snapshot())
    assert metrics["violation_rate_percent"] == 0.0
    assert metrics["efficiency_score"] == 0.0


def test_derived_metrics_rates():
    tracker = MetricsTracker()
    tracker.record(_record(ActionType.WARN, ms=200.0))
    tracker.record(_record(ActionType.ALLOW, ms=200.0))

    metrics = derived_metrics(tracker.snapshot())
    assert metrics["violation_rate_percent"] == 50.0
    assert metrics["action_rate_percent"] == 50.0
    # speed = 1000/200 capped at 1，effectiveness = 1/1
    assert metrics["efficiency_score"] == 1.0
