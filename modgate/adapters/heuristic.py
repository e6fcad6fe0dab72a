"""Local keyword heuristic classifier with per-provider score profiles."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from modgate.adapters.base import ModelAdapter
from modgate.config.moderation_rules import load_moderation_rules
from modgate.core.models import CATEGORIES, ContentItem
from modgate.util.risk_scoring import clamp01


_SHOUTING_RE = re.compile(r"[A-Z]{3,}")
_EXCLAMATION_RE = re.compile(r"!{2,}")
_REPEATED_CHAR_RE = re.compile(r"(.)\1{4,}")
_LINK_RE = re.compile(r"https?://", re.IGNORECASE)


@dataclass(slots=True)
class ScoreProfile:
    """How one vendor shapes the shared heuristic scores."""

    categories: tuple[str, ...] = CATEGORIES
    multipliers: dict[str, float] = field(default_factory=dict)
    fixed_confidence: float | None = None


PROFILES: dict[str, ScoreProfile] = {
    "openai": ScoreProfile(),
    "google": ScoreProfile(multipliers={"toxicity": 0.9, "harassment": 0.8}),
    "azure": ScoreProfile(),
    "aws": ScoreProfile(),
    "custom": ScoreProfile(categories=("profanity", "spam", "toxicity"), fixed_confidence=0.85),
}


class KeywordScorer:
    """Deterministic per-category keyword scoring shared by every heuristic profile."""

    def __init__(self, rules: dict[str, Any] | None = None) -> None:
        config = (rules if rules is not None else load_moderation_rules()).get("heuristic", {})
        self._weights = {name: float(value) for name, value in config.get("term_weights", {}).items()}
        self._shouting_weight = float(config.get("shouting_weight", 0.1))
        self._exclamation_weight = float(config.get("exclamation_weight", 0.1))
        self._repeated_char_weight = float(config.get("repeated_char_weight", 0.3))
        self._link_weight = float(config.get("link_weight", 0.4))
        self._link_threshold = int(config.get("link_threshold", 2))

        patterns: dict[str, list[tuple[str, re.Pattern[str]]]] = {}
        for category, terms in config.get("lexicons", {}).items():
            compiled: list[tuple[str, re.Pattern[str]]] = []
            for term in terms or []:
                text = str(term).strip()
                if not text:
                    continue
                compiled.append((text, re.compile(rf"\b{re.escape(text)}\b", re.IGNORECASE)))
            patterns[str(category)] = compiled
        self._patterns = patterns

    def matched_terms(self, text: str, category: str | None = None) -> list[str]:
        hits: list[str] = []
        for name, compiled in self._patterns.items():
            if category is not None and name != category:
                continue
            hits.extend(term for term, pattern in compiled if pattern.search(text))
        return hits

    def score(self, text: str) -> dict[str, float]:
        scores: dict[str, float] = {}
        for category in CATEGORIES:
            hits = len(self.matched_terms(text, category))
            scores[category] = hits * self._weights.get(category, 0.0)

        if _SHOUTING_RE.search(text):
            scores["toxicity"] += self._shouting_weight
        if _EXCLAMATION_RE.search(text):
            scores["toxicity"] += self._exclamation_weight
        if _REPEATED_CHAR_RE.search(text):
            scores["spam"] += self._repeated_char_weight
        if len(_LINK_RE.findall(text)) > self._link_threshold:
            scores["spam"] += self._link_weight

        return {name: round(clamp01(value), 6) for name, value in scores.items()}


class HeuristicModelAdapter(ModelAdapter):
    """Keyword classifier standing in for a vendor model when no endpoint is configured."""

    def __init__(
        self,
        model_id: str,
        model_name: str | None = None,
        *,
        provider: str = "custom",
        scorer: KeywordScorer | None = None,
    ) -> None:
        super().__init__(model_id, model_name)
        self.provider = provider
        self.profile = PROFILES.get(provider, ScoreProfile())
        self._scorer = scorer or KeywordScorer()

    async def _score(self, item: ContentItem) -> tuple[dict[str, float], float]:
        base = self._scorer.score(item.content)
        scores = {
            name: clamp01(base.get(name, 0.0) * self.profile.multipliers.get(name, 1.0))
            for name in self.profile.categories
        }
        if self.profile.fixed_confidence is not None:
            return scores, self.profile.fixed_confidence
        mean = sum(scores.values()) / len(scores) if scores else 0.0
        return scores, max(0.6, min(0.95, mean + 0.3))
