"""Moderation rule loader (model catalog, thresholds, lexicons) with mtime-based cache."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from threading import Lock
from typing import Any

import yaml

from modgate.config.settings import settings
from modgate.core.errors import InvalidConfiguration
from modgate.util.logger import logger


def _band(warn: float, block: float) -> dict[str, float]:
    return {"warn": warn, "block": block}


# 内置默认；rules 目录下的 YAML 只需写要覆盖的部分
_DEFAULT_RULES: dict[str, Any] = {
    "ai_models": [
        {
            "config_id": "openai_moderation",
            "model_name": "OpenAI Moderation",
            "model_type": "text",
            "provider": "openai",
            "confidence_threshold": 0.7,
            "enabled": True,
        },
        {
            "config_id": "google_perspective",
            "model_name": "Google Perspective API",
            "model_type": "text",
            "provider": "google",
            "confidence_threshold": 0.7,
            "enabled": True,
        },
        {
            "config_id": "azure_content_moderator",
            "model_name": "Azure Content Moderator",
            "model_type": "multimodal",
            "provider": "azure",
            "confidence_threshold": 0.7,
            "enabled": True,
        },
        {
            "config_id": "aws_comprehend",
            "model_name": "AWS Comprehend",
            "model_type": "text",
            "provider": "aws",
            "confidence_threshold": 0.7,
            "enabled": True,
        },
        {
            "config_id": "custom_profanity",
            "model_name": "Custom Profanity Filter",
            "model_type": "text",
            "provider": "custom",
            "confidence_threshold": 0.8,
            "enabled": True,
        },
    ],
    "thresholds": {
        "high": {
            "categories": {
                "toxicity": _band(0.45, 0.75),
                "profanity": _band(0.45, 0.8),
                "hate_speech": _band(0.35, 0.7),
                "harassment": _band(0.4, 0.75),
                "threat": _band(0.35, 0.85),
                "spam": _band(0.6, 0.9),
                "adult_content": _band(0.4, 0.75),
                "violence": _band(0.4, 0.8),
            },
            "spam_filter": 0.3,
            "quarantine": 0.5,
            "escalate": 0.65,
        },
        "medium": {
            "categories": {
                "toxicity": _band(0.55, 0.85),
                "profanity": _band(0.6, 0.9),
                "hate_speech": _band(0.45, 0.8),
                "harassment": _band(0.5, 0.85),
                "threat": _band(0.45, 0.9),
                "spam": _band(0.7, 0.95),
                "adult_content": _band(0.5, 0.85),
                "violence": _band(0.5, 0.88),
            },
            "spam_filter": 0.4,
            "quarantine": 0.6,
            "escalate": 0.75,
        },
        "low": {
            "categories": {
                "toxicity": _band(0.65, 0.92),
                "profanity": _band(0.7, 0.95),
                "hate_speech": _band(0.55, 0.9),
                "harassment": _band(0.6, 0.92),
                "threat": _band(0.55, 0.95),
                "spam": _band(0.8, 0.98),
                "adult_content": _band(0.6, 0.92),
                "violence": _band(0.6, 0.94),
            },
            "spam_filter": 0.5,
            "quarantine": 0.7,
            "escalate": 0.85,
        },
    },
    "filtering": {
        "replace_with": "[FILTERED]",
    },
    "heuristic": {
        "lexicons": {
            "toxicity": ["hate", "stupid", "idiot", "moron", "disgusting", "pathetic"],
            "profanity": ["damn", "hell", "crap", "stupid", "shut up"],
            "hate_speech": ["you people", "people like you", "those people", "not welcome", "go back"],
            "harassment": ["shut up", "get lost", "nobody cares", "you suck"],
            "threat": ["kill", "hurt", "destroy", "attack", "violence"],
            "spam": ["buy now", "click here", "limited time", "special offer"],
            "adult_content": ["sexy", "adult", "explicit", "mature"],
            "violence": ["fight", "punch", "hit", "violence", "aggressive"],
        },
        "term_weights": {
            "toxicity": 0.3,
            "profanity": 0.3,
            "hate_speech": 0.4,
            "harassment": 0.25,
            "threat": 0.5,
            "spam": 0.2,
            "adult_content": 0.3,
            "violence": 0.3,
        },
        "shouting_weight": 0.1,
        "exclamation_weight": 0.1,
        "repeated_char_weight": 0.3,
        "link_weight": 0.4,
        "link_threshold": 2,
    },
    "demo_content": [
        {
            "content": "This is a normal, professional interview question about your experience.",
            "type": "text",
            "expected_action": "allow",
        },
        {
            "content": "You are such an idiot! This is completely stupid!",
            "type": "chat",
            "expected_action": "warn",
        },
        {
            "content": "I hate people like you and you should go back where you came from!",
            "type": "comment",
            "expected_action": "block",
        },
        {
            "content": "BUY NOW! LIMITED TIME OFFER! CLICK HERE FOR AMAZING DEALS!!!",
            "type": "chat",
            "expected_action": "filter",
        },
        {
            "content": "I will hurt you and destroy everything you care about!",
            "type": "video-transcript",
            "expected_action": "block",
        },
    ],
}

_CACHE_LOCK = Lock()
_CACHE_PATH = ""
_CACHE_MTIME_NS = -1
_CACHE_RULES: dict[str, Any] | None = None


def _resolve_rules_file(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    app_root = Path(__file__).resolve().parents[2]
    candidates = [Path.cwd() / candidate, app_root / candidate]
    for item in candidates:
        if item.exists():
            return item.resolve()
    return candidates[-1].resolve()


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def load_moderation_rules(path: str | None = None) -> dict[str, Any]:
    global _CACHE_PATH, _CACHE_MTIME_NS, _CACHE_RULES

    rules_path = _resolve_rules_file(path or settings.moderation_rules_path)
    path_key = str(rules_path)
    mtime_ns = rules_path.stat().st_mtime_ns if rules_path.exists() else -1

    with _CACHE_LOCK:
        if _CACHE_RULES is not None and _CACHE_PATH == path_key and _CACHE_MTIME_NS == mtime_ns:
            return deepcopy(_CACHE_RULES)

        rules = deepcopy(_DEFAULT_RULES)
        if rules_path.exists():
            raw = yaml.safe_load(rules_path.read_text(encoding="utf-8")) or {}
            if not isinstance(raw, dict):
                raise InvalidConfiguration(f"moderation rules file must be a mapping: {rules_path}")
            rules = _deep_merge(rules, raw)
            logger.info("moderation rules loaded path=%s", rules_path)
        else:
            logger.info("moderation rules file not found, using defaults path=%s", rules_path)

        _CACHE_PATH = path_key
        _CACHE_MTIME_NS = mtime_ns
        _CACHE_RULES = rules
        return deepcopy(rules)


def model_catalog(rules: dict[str, Any] | None = None) -> dict[str, dict[str, Any]]:
    """Enabled model configs keyed by ``config_id``."""

    source = rules if rules is not None else load_moderation_rules()
    catalog: dict[str, dict[str, Any]] = {}
    for item in source.get("ai_models", []):
        if not isinstance(item, dict):
            continue
        config_id = str(item.get("config_id", "")).strip()
        if not config_id or not item.get("enabled", True):
            continue
        catalog[config_id] = dict(item)
    return catalog
