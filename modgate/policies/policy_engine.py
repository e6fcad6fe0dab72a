"""Threshold-driven moderation decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from modgate.config.moderation_rules import load_moderation_rules
from modgate.config.sensitivity import SUPPORTED_LEVELS, normalize_sensitivity
from modgate.core.errors import InvalidConfiguration, RuleNotFound
from modgate.core.models import CATEGORIES, Action, ActionType, ScoreVector, Severity
from modgate.observability.logging import log_event
from modgate.util.logger import logger


# 同分时按此顺序取更严重的类别
SEVERITY_ORDER: tuple[str, ...] = (
    "threat",
    "violence",
    "hate_speech",
    "adult_content",
    "harassment",
    "toxicity",
    "profanity",
    "spam",
)
CRITICAL_RISK = 0.9

_LEVEL_STRICTNESS = {"low": 0, "medium": 1, "high": 2}
_OVERALL_RULES = {
    "rule_overall_escalate": "escalate",
    "rule_overall_quarantine": "quarantine",
    "rule_spam_filter": "spam_filter",
}


@dataclass(frozen=True, slots=True)
class CategoryThreshold:
    warn: float
    block: float


@dataclass(frozen=True, slots=True)
class ThresholdTable:
    level: str
    categories: dict[str, CategoryThreshold]
    spam_filter: float
    quarantine: float
    escalate: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "categories": {
                name: {"warn": item.warn, "block": item.block} for name, item in self.categories.items()
            },
            "spam_filter": self.spam_filter,
            "quarantine": self.quarantine,
            "escalate": self.escalate,
        }


def _unit(value: Any, where: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"threshold {where} is not a number: {value!r}") from exc
    if not 0.0 <= number <= 1.0:
        raise InvalidConfiguration(f"threshold {where} out of range [0,1]: {number}")
    return number


def parse_threshold_tables(raw: dict[str, Any]) -> dict[str, ThresholdTable]:
    if not isinstance(raw, dict):
        raise InvalidConfiguration("thresholds must be a mapping of sensitivity levels")

    tables: dict[str, ThresholdTable] = {}
    for level in SUPPORTED_LEVELS:
        entry = raw.get(level)
        if not isinstance(entry, dict):
            raise InvalidConfiguration(f"thresholds missing sensitivity level: {level}")
        categories: dict[str, CategoryThreshold] = {}
        raw_categories = entry.get("categories") or {}
        for name in CATEGORIES:
            band = raw_categories.get(name)
            if not isinstance(band, dict):
                raise InvalidConfiguration(f"thresholds.{level} missing category: {name}")
            warn = _unit(band.get("warn"), f"{level}.{name}.warn")
            block = _unit(band.get("block"), f"{level}.{name}.block")
            if warn > block:
                raise InvalidConfiguration(f"thresholds.{level}.{name}: warn {warn} exceeds block {block}")
            categories[name] = CategoryThreshold(warn=warn, block=block)

        quarantine = _unit(entry.get("quarantine"), f"{level}.quarantine")
        escalate = _unit(entry.get("escalate"), f"{level}.escalate")
        if quarantine > escalate:
            raise InvalidConfiguration(f"thresholds.{level}: quarantine {quarantine} exceeds escalate {escalate}")
        spam_filter = _unit(entry.get("spam_filter"), f"{level}.spam_filter")
        if spam_filter > categories["spam"].warn:
            raise InvalidConfiguration(f"thresholds.{level}: spam_filter must not exceed the spam warn threshold")

        tables[level] = ThresholdTable(
            level=level,
            categories=categories,
            spam_filter=spam_filter,
            quarantine=quarantine,
            escalate=escalate,
        )

    _check_monotonic(tables)
    return tables


def _check_monotonic(tables: dict[str, ThresholdTable]) -> None:
    """Stricter levels must never require a higher score to flag content."""

    ordered = sorted(tables.values(), key=lambda table: _LEVEL_STRICTNESS[table.level])
    for lenient, strict in zip(ordered, ordered[1:]):
        pairs: list[tuple[str, float, float]] = [
            ("spam_filter", lenient.spam_filter, strict.spam_filter),
            ("quarantine", lenient.quarantine, strict.quarantine),
            ("escalate", lenient.escalate, strict.escalate),
        ]
        for name in CATEGORIES:
            pairs.append((f"{name}.warn", lenient.categories[name].warn, strict.categories[name].warn))
            pairs.append((f"{name}.block", lenient.categories[name].block, strict.categories[name].block))
        for where, lenient_value, strict_value in pairs:
            if strict_value > lenient_value:
                raise InvalidConfiguration(
                    f"threshold {where} for {strict.level} ({strict_value}) exceeds {lenient.level} ({lenient_value})"
                )


def _pick_trigger(candidates: dict[str, float]) -> tuple[str, float]:
    # 分数高者优先；同分按 SEVERITY_ORDER
    name = min(candidates, key=lambda item: (-candidates[item], SEVERITY_ORDER.index(item)))
    return name, candidates[name]


class PolicyEngine:
    def __init__(self, tables: dict[str, ThresholdTable] | None = None) -> None:
        if tables is None:
            tables = parse_threshold_tables(load_moderation_rules().get("thresholds", {}))
        self._tables = tables

    @classmethod
    def from_rules(cls, rules: dict[str, Any]) -> PolicyEngine:
        return cls(parse_threshold_tables(rules.get("thresholds", {})))

    def table(self, sensitivity: str | None = None) -> ThresholdTable:
        return self._tables[normalize_sensitivity(sensitivity)]

    def decide(self, scores: ScoreVector, sensitivity: str | None = None, auto_action: bool = True) -> Action:
        table = self.table(sensitivity)
        categories = scores.categories()
        risk = scores.overall_risk

        action = ActionType.ALLOW
        severity = Severity.LOW
        trigger: str | None = None
        trigger_score: float | None = None
        reason = "no violations detected"

        blocked = {name: value for name, value in categories.items() if value >= table.categories[name].block}
        warned = {name: value for name, value in categories.items() if value >= table.categories[name].warn}

        if blocked:
            trigger, trigger_score = _pick_trigger(blocked)
            action = ActionType.BLOCK
            severity = Severity.CRITICAL if risk >= CRITICAL_RISK else Severity.HIGH
            reason = f"{trigger} score {trigger_score:.2f} >= block threshold {table.categories[trigger].block:.2f}"
        elif risk >= table.escalate:
            action = ActionType.ESCALATE
            severity = Severity.HIGH
            trigger, trigger_score = "overall_risk", risk
            reason = f"overall_risk {risk:.2f} >= escalate threshold {table.escalate:.2f}"
        elif risk >= table.quarantine:
            action = ActionType.QUARANTINE
            severity = Severity.MEDIUM
            trigger, trigger_score = "overall_risk", risk
            reason = f"overall_risk {risk:.2f} >= quarantine threshold {table.quarantine:.2f}"
        elif warned:
            trigger, trigger_score = _pick_trigger(warned)
            band = table.categories[trigger]
            action = ActionType.WARN
            severity = Severity.MEDIUM if trigger_score >= (band.warn + band.block) / 2.0 else Severity.LOW
            reason = f"{trigger} score {trigger_score:.2f} >= warn threshold {band.warn:.2f}"
        elif scores.spam >= table.spam_filter:
            action = ActionType.FILTER
            trigger, trigger_score = "spam", scores.spam
            reason = f"spam score {scores.spam:.2f} >= filter threshold {table.spam_filter:.2f}"

        decided = Action(
            action=action,
            reason=reason,
            severity=severity,
            confidence=scores.confidence,
            enforced=bool(auto_action) and action is not ActionType.ALLOW,
            triggered_category=trigger,
            triggered_score=None if trigger_score is None else round(trigger_score, 6),
        )
        logger.debug(
            "policy decided action=%s severity=%s level=%s trigger=%s risk=%.4f",
            decided.action.value,
            decided.severity.value,
            table.level,
            trigger,
            risk,
        )
        return decided

    def describe_rules(self, sensitivity: str | None = None) -> list[dict[str, Any]]:
        """Rule list for display, one rule per category plus the overall-risk rules."""

        table = self.table(sensitivity)
        rules: list[dict[str, Any]] = []
        for priority, name in enumerate(SEVERITY_ORDER, start=1):
            band = table.categories[name]
            label = name.replace("_", " ").title()
            rules.append(
                {
                    "rule_id": f"rule_{name}",
                    "rule_name": f"{label} Detection",
                    "rule_type": name,
                    "priority": priority,
                    "threshold_score": band.block,
                    "warn_threshold": band.warn,
                    "enabled": True,
                    "description": f"Block {label.lower()} at {band.block:.2f}, warn at {band.warn:.2f}",
                }
            )
        rules.append(
            {
                "rule_id": "rule_overall_escalate",
                "rule_name": "Overall Risk Escalation",
                "rule_type": "overall_risk",
                "priority": len(rules) + 1,
                "threshold_score": table.escalate,
                "enabled": True,
                "description": f"Escalate to human moderators at overall risk {table.escalate:.2f}",
            }
        )
        rules.append(
            {
                "rule_id": "rule_overall_quarantine",
                "rule_name": "Overall Risk Quarantine",
                "rule_type": "overall_risk",
                "priority": len(rules) + 1,
                "threshold_score": table.quarantine,
                "enabled": True,
                "description": f"Quarantine for manual review at overall risk {table.quarantine:.2f}",
            }
        )
        rules.append(
            {
                "rule_id": "rule_spam_filter",
                "rule_name": "Spam Filtering",
                "rule_type": "spam",
                "priority": len(rules) + 1,
                "threshold_score": table.spam_filter,
                "enabled": True,
                "description": f"Filter spam at {table.spam_filter:.2f}",
            }
        )
        return rules

    def to_payload(self) -> dict[str, Any]:
        return {level: table.to_payload() for level, table in self._tables.items()}

    def update_rule(self, rule_id: str, updates: dict[str, Any], sensitivity: str | None = None) -> dict[str, Any]:
        """Override one rule's thresholds at a sensitivity level.

        The edited tables go through the same validation as the rules file and
        replace the live tables only when valid.
        """

        level = normalize_sensitivity(sensitivity)
        fields = {key: updates[key] for key in ("threshold_score", "warn_threshold") if updates.get(key) is not None}
        if not fields:
            raise InvalidConfiguration("no valid fields to update (threshold_score, warn_threshold)")

        raw = self.to_payload()
        entry = raw[level]
        if rule_id.startswith("rule_") and rule_id[len("rule_") :] in CATEGORIES:
            band = entry["categories"][rule_id[len("rule_") :]]
            if "threshold_score" in fields:
                band["block"] = fields["threshold_score"]
            if "warn_threshold" in fields:
                band["warn"] = fields["warn_threshold"]
        elif rule_id in _OVERALL_RULES:
            if "warn_threshold" in fields:
                raise InvalidConfiguration(f"{rule_id} has no warn threshold")
            entry[_OVERALL_RULES[rule_id]] = fields["threshold_score"]
        else:
            raise RuleNotFound(f"rule not found: {rule_id}")

        self._tables = parse_threshold_tables(raw)
        log_event("moderation_rule_updated", rule_id=rule_id, level=level, **fields)
        return next(rule for rule in self.describe_rules(level) if rule["rule_id"] == rule_id)
