"""Content moderation HTTP routes."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from modgate.config.moderation_rules import load_moderation_rules, model_catalog
from modgate.config.sensitivity import SUPPORTED_LEVELS, normalize_sensitivity
from modgate.config.settings import settings
from modgate.core.errors import InvalidContent, ModGateError, SessionInactive
from modgate.core.metrics import derived_metrics
from modgate.core.models import ActionType, SessionConfig
from modgate.core.session_manager import SessionManager
from modgate.util.logger import logger

router = APIRouter()
manager = SessionManager()

_ACTION_DESCRIPTIONS = {
    ActionType.ALLOW: "Content is allowed without restrictions",
    ActionType.WARN: "User receives a warning about content",
    ActionType.FILTER: "Content is filtered or modified",
    ActionType.BLOCK: "Content is completely blocked",
    ActionType.QUARANTINE: "Content is held for manual review",
    ActionType.ESCALATE: "Content is escalated to human moderators",
}
_SENSITIVITY_DESCRIPTIONS = {
    "low": "Lenient thresholds, only clear violations are acted on",
    "medium": "Balanced thresholds for general use",
    "high": "Strict thresholds, borderline content is flagged",
}


def _error_response(exc: ModGateError) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": exc.message, "error_code": exc.code}
    if isinstance(exc, SessionInactive) and exc.statistics is not None:
        content["final_statistics"] = exc.statistics
    return JSONResponse(status_code=exc.status_code, content=content)


_OPTION_FIELDS: tuple[str, ...] = ("mode", "sensitivity", "auto_action", "real_time", "ai_models")
_SETTING_FIELDS: tuple[str, ...] = ("multi_model_analysis", "cache_results", "user_notifications")


def _session_config(options: Any) -> SessionConfig:
    """Build a SessionConfig from the client ``options`` object; pydantic coerces the flags."""

    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise InvalidContent("options must be an object")
    extra = options.get("settings") or {}
    if not isinstance(extra, dict):
        raise InvalidContent("options.settings must be an object")

    values: dict[str, Any] = {key: options[key] for key in _OPTION_FIELDS if options.get(key) is not None}
    values.setdefault("sensitivity", settings.default_sensitivity)
    values.update({key: extra[key] for key in _SETTING_FIELDS if extra.get(key) is not None})
    try:
        return SessionConfig(**values)
    except ValidationError as exc:
        errors = exc.errors()
        where = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
        raise InvalidContent(f"invalid session option: {where}") from exc


def _page(value: Any, default: int, upper: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(0, min(number, upper))


@router.post("/sessions", status_code=201)
async def start_session(payload: dict):
    try:
        session = await manager.start(
            interview_id=payload.get("interview_id"),
            user_id=payload.get("user_id"),
            config=_session_config(payload.get("options")),
        )
    except ModGateError as exc:
        logger.info("start session rejected code=%s detail=%s", exc.code, exc.message)
        return _error_response(exc)
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "session": session.info(),
            "message": "Content moderation session started successfully",
        },
    )


@router.post("/sessions/{session_id}/stop")
async def stop_session(session_id: str):
    try:
        final = await manager.stop(session_id)
    except ModGateError as exc:
        return _error_response(exc)
    return {
        "success": True,
        "final_statistics": final.model_dump(),
        "message": "Content moderation session stopped successfully",
    }


@router.post("/sessions/{session_id}/analyze")
async def analyze_content(session_id: str, payload: dict):
    content_data = payload.get("content_data")
    try:
        if not isinstance(content_data, dict):
            raise InvalidContent("content_data is required")
        record = await manager.analyze(session_id, content_data)
    except ModGateError as exc:
        return _error_response(exc)
    return {
        "success": True,
        "analysis": record.to_payload(),
        "action_taken": record.action.model_dump(mode="json"),
        "processing_time_ms": round(record.processing_time_ms, 2),
    }


@router.post("/sessions/{session_id}/batch-analyze")
async def batch_analyze(session_id: str, payload: dict):
    items = payload.get("content_items")
    try:
        if not isinstance(items, list) or not items:
            raise InvalidContent("content_items must be a non-empty array")
        outcome = await manager.batch_analyze(session_id, items)
    except ModGateError as exc:
        return _error_response(exc)
    return {
        "success": True,
        "total_processed": len(outcome.entries),
        "batch_results": [entry.to_payload() for entry in outcome.entries],
        "summary": outcome.summary(),
    }


@router.get("/sessions/{session_id}/analytics")
async def session_analytics(session_id: str):
    try:
        session = manager.get(session_id)
    except ModGateError as exc:
        return _error_response(exc)
    stats = session.statistics()
    recent = list(reversed(session.metrics.recent()))[:10]
    return {
        "success": True,
        "session_id": session_id,
        "statistics": stats.model_dump(),
        "metrics": derived_metrics(stats),
        "session_info": session.info(),
        "recent": [record.to_payload() for record in recent],
    }


@router.get("/sessions/{session_id}/history")
async def session_history(session_id: str, limit: int = 50, offset: int = 0, content_type: str | None = None):
    try:
        records = manager.history(
            session_id,
            limit=_page(limit, 50, settings.history_size),
            offset=_page(offset, 0, settings.history_size),
            content_type=content_type or None,
        )
    except ModGateError as exc:
        return _error_response(exc)
    return {
        "success": True,
        "session_id": session_id,
        "history": [record.to_payload() for record in records],
        "count": len(records),
    }


@router.get("/sessions/{session_id}/actions")
async def session_actions(session_id: str, limit: int = 50, offset: int = 0, action_type: str | None = None):
    try:
        records = manager.actions(
            session_id,
            limit=_page(limit, 50, settings.history_size),
            offset=_page(offset, 0, settings.history_size),
            action_type=action_type or None,
        )
    except ModGateError as exc:
        return _error_response(exc)
    return {
        "success": True,
        "session_id": session_id,
        "actions": [
            {
                "analysis_id": record.analysis_id,
                "content_id": record.item.content_id,
                "content_type": record.item.content_type,
                **record.action.model_dump(mode="json"),
                "user_notified": record.user_notified,
                "timestamp": record.created_at.isoformat(),
            }
            for record in records
        ],
        "count": len(records),
    }


@router.get("/rules")
async def moderation_rules(sensitivity: str | None = None):
    level = normalize_sensitivity(sensitivity)
    return {
        "success": True,
        "sensitivity_level": level,
        "rules": manager.policy.describe_rules(level),
        "thresholds": manager.policy.to_payload(),
    }


@router.put("/rules/{rule_id}")
async def update_moderation_rule(rule_id: str, payload: dict):
    try:
        rule = manager.policy.update_rule(rule_id, payload, sensitivity=payload.get("sensitivity"))
    except ModGateError as exc:
        logger.info("rule update rejected rule_id=%s code=%s detail=%s", rule_id, exc.code, exc.message)
        return _error_response(exc)
    return {"success": True, "rule": rule, "message": "Moderation rule updated successfully"}


@router.get("/sessions/{session_id}/export")
async def export_session(session_id: str, format: str = "json"):
    try:
        exported = manager.export(session_id, format)
    except ModGateError as exc:
        return _error_response(exc)
    if isinstance(exported, str):
        return PlainTextResponse(
            content=exported,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="moderation_session_{session_id}.csv"'},
        )
    return JSONResponse(
        content=exported,
        headers={"Content-Disposition": f'attachment; filename="moderation_session_{session_id}.json"'},
    )


@router.post("/test")
async def test_moderation(payload: dict):
    """One-shot analysis in a throwaway session, stopped before returning."""

    text = payload.get("test_content")
    options = payload.get("options")
    try:
        if not isinstance(text, str) or not text.strip():
            raise InvalidContent("test_content is required")
        config = _session_config(options)
        if not config.ai_models:
            config = config.model_copy(update={"ai_models": manager.registry.ids()})
        session = await manager.start(f"test_interview_{uuid4().hex[:8]}", "test_user", config)
    except ModGateError as exc:
        return _error_response(exc)

    try:
        record = await manager.analyze(
            session.session_id,
            {"content": text, "type": "text", "content_id": f"test_{uuid4().hex[:8]}"},
        )
    except ModGateError as exc:
        return _error_response(exc)
    finally:
        await manager.stop(session.session_id)
    return {"success": True, "test_result": record.to_payload(), "test_session_id": session.session_id}


@router.get("/demo-data")
async def demo_data():
    rules = load_moderation_rules()
    return {
        "success": True,
        "ai_models": list(model_catalog(rules).values()),
        "demo_content": rules.get("demo_content", []),
        "moderation_rules": manager.policy.describe_rules(settings.default_sensitivity),
        "sensitivity_levels": [
            {"level": level, "description": _SENSITIVITY_DESCRIPTIONS[level]} for level in SUPPORTED_LEVELS
        ],
        "action_types": [
            {"action": action.value, "description": description} for action, description in _ACTION_DESCRIPTIONS.items()
        ],
    }
