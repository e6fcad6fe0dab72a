"""Audit trail for enforced moderation actions."""

from __future__ import annotations

import json
import queue
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from modgate.config.settings import settings
from modgate.core.models import AnalysisRecord
from modgate.util.logger import logger


_AUDIT_QUEUE: queue.Queue[tuple[Path, dict[str, Any]] | None] = queue.Queue(maxsize=10000)
_AUDIT_WORKER: threading.Thread | None = None
_AUDIT_LOCK = threading.Lock()


def _audit_path() -> Path | None:
    raw = (settings.audit_log_path or "").strip()
    return Path(raw) if raw else None


def _append_payload(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, ensure_ascii=False) + "\n")


def _worker_loop() -> None:
    while True:
        item = _AUDIT_QUEUE.get()
        try:
            if item is None:
                break
            _append_payload(*item)
        except OSError as exc:  # pragma: no cover - operational safeguard
            logger.warning("audit worker write failed: %s", exc)
        finally:
            _AUDIT_QUEUE.task_done()


def _ensure_worker() -> None:
    global _AUDIT_WORKER
    if _AUDIT_WORKER is not None and _AUDIT_WORKER.is_alive():
        return
    with _AUDIT_LOCK:
        if _AUDIT_WORKER is not None and _AUDIT_WORKER.is_alive():
            return
        _AUDIT_WORKER = threading.Thread(target=_worker_loop, name="modgate-audit-writer", daemon=True)
        _AUDIT_WORKER.start()


def action_event(record: AnalysisRecord) -> dict[str, Any]:
    return {
        "analysis_id": record.analysis_id,
        "session_id": record.session_id,
        "content_id": record.item.content_id,
        "content_type": record.item.content_type,
        "action_type": record.action.action.value,
        "action_reason": record.action.reason,
        "severity_level": record.action.severity.value,
        "auto_action": record.action.enforced,
        "filtered_content": record.filtered_content,
        "user_notified": record.user_notified,
        "escalated": record.action.action.value == "escalate",
        "overall_risk": record.scores.overall_risk,
        "cached": record.cached,
    }


def write_audit(event: dict[str, Any]) -> None:
    path = _audit_path()
    if path is None:
        return
    payload = {
        "ts": datetime.now(tz=timezone.utc).isoformat(),
        **event,
    }
    _ensure_worker()
    try:
        _AUDIT_QUEUE.put_nowait((path, payload))
    except queue.Full:  # pragma: no cover - overload safeguard
        _append_payload(path, payload)
        logger.warning("audit queue full, fallback to sync write analysis_id=%s", event.get("analysis_id", "unknown"))
    logger.debug("audit event queued: analysis_id=%s", event.get("analysis_id", "unknown"))


def flush_audit(timeout_seconds: float = 1.0) -> None:
    """Block until queued events are written (used on shutdown and in tests)."""

    if _AUDIT_WORKER is None:
        return
    done = threading.Event()

    def _wait() -> None:
        _AUDIT_QUEUE.join()
        done.set()

    threading.Thread(target=_wait, daemon=True).start()
    done.wait(timeout=timeout_seconds)


def shutdown_audit_worker(timeout_seconds: float = 1.0) -> None:
    global _AUDIT_WORKER
    if _AUDIT_WORKER is None:
        return
    try:
        _AUDIT_QUEUE.put_nowait(None)
    except queue.Full:
        pass
    worker = _AUDIT_WORKER
    worker.join(timeout=timeout_seconds)
    _AUDIT_WORKER = None
