"""Adapter registry built from the model catalog."""

from __future__ import annotations

from typing import Any

from modgate.adapters.base import ModelAdapter
from modgate.adapters.heuristic import HeuristicModelAdapter, KeywordScorer
from modgate.adapters.remote import RemoteModelAdapter
from modgate.config.moderation_rules import load_moderation_rules, model_catalog
from modgate.core.errors import InvalidConfiguration
from modgate.util.logger import logger


def build_adapter(config: dict[str, Any], scorer: KeywordScorer | None = None) -> ModelAdapter:
    model_id = str(config.get("config_id", "")).strip()
    if not model_id:
        raise InvalidConfiguration("model config missing config_id")
    model_name = str(config.get("model_name") or model_id)
    provider = str(config.get("provider") or "custom").strip().lower()
    endpoint = str(config.get("endpoint") or "").strip()
    if endpoint:
        return RemoteModelAdapter(
            model_id,
            model_name,
            endpoint=endpoint,
            provider=provider,
            timeout_seconds=config.get("timeout_seconds"),
            headers=config.get("headers"),
        )
    return HeuristicModelAdapter(model_id, model_name, provider=provider, scorer=scorer)


class AdapterRegistry:
    """Holds one adapter instance per configured model; instances are shared across sessions."""

    def __init__(self, adapters: dict[str, ModelAdapter] | None = None) -> None:
        self._adapters: dict[str, ModelAdapter] = dict(adapters or {})

    @classmethod
    def from_rules(cls, rules: dict[str, Any] | None = None) -> AdapterRegistry:
        source = rules if rules is not None else load_moderation_rules()
        scorer = KeywordScorer(source)
        adapters = {model_id: build_adapter(config, scorer=scorer) for model_id, config in model_catalog(source).items()}
        logger.info("adapter registry built models=%s", sorted(adapters))
        return cls(adapters)

    def register(self, adapter: ModelAdapter) -> None:
        self._adapters[adapter.model_id] = adapter

    def ids(self) -> list[str]:
        return sorted(self._adapters)

    def unknown(self, model_ids: list[str]) -> list[str]:
        return [model_id for model_id in model_ids if model_id not in self._adapters]

    def resolve(self, model_ids: list[str]) -> list[ModelAdapter]:
        missing = self.unknown(model_ids)
        if missing:
            raise InvalidConfiguration(f"unknown ai models: {', '.join(missing)}")
        return [self._adapters[model_id] for model_id in model_ids]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
