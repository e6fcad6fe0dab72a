import asyncio

import pytest

from modgate.adapters.heuristic import HeuristicModelAdapter, KeywordScorer
from modgate.config.moderation_rules import _DEFAULT_RULES
from modgate.core.aggregator import Aggregator
from modgate.core.models import ContentItem
from modgate.policies.policy_engine import PolicyEngine


def _scorer() -> KeywordScorer:
    return KeywordScorer(_DEFAULT_RULES)


def test_keyword_matching_respects_word_boundaries():
    scorer = _scorer()
    assert scorer.matched_terms("That was a skillful hit", "violence") == ["hit"]
    # "hell" 不应命中 "hello"
    assert scorer.matched_terms("hello everyone", "profanity") == []


def test_scores_are_deterministic():
    scorer = _scorer()
    text = "You are such an idiot! This is completely stupid!"
    assert scorer.score(text) == scorer.score(text)
    assert scorer.score(text)["toxicity"] == pytest.approx(0.6)


def test_custom_profile_reports_subset_with_fixed_confidence():
    adapter = HeuristicModelAdapter("custom_profanity", provider="custom", scorer=_scorer())
    result = asyncio.run(adapter.classify(ContentItem(content_id="c1", content="damn this crap")))

    assert result.success is True
    assert set(result.scores) == {"profanity", "spam", "toxicity"}
    assert result.confidence == 0.85
    assert result.scores["profanity"] == pytest.approx(0.6)


def test_google_profile_dampens_toxicity():
    scorer = _scorer()
    item = ContentItem(content_id="c1", content="what an idiot, so stupid")
    openai = asyncio.run(HeuristicModelAdapter("o", provider="openai", scorer=scorer).classify(item))
    google = asyncio.run(HeuristicModelAdapter("g", provider="google", scorer=scorer).classify(item))
    assert google.scores["toxicity"] < openai.scores["toxicity"]


def test_empty_content_is_invalid_input():
    adapter = HeuristicModelAdapter("openai_moderation", provider="openai", scorer=_scorer())
    result = asyncio.run(adapter.classify(ContentItem(content_id="c1", content="   ")))
    assert result.success is False
    assert result.error_kind == "invalid_input"


@pytest.mark.parametrize("sample", _DEFAULT_RULES["demo_content"], ids=lambda sample: sample["expected_action"])
def test_demo_samples_reach_expected_action(sample):
    scorer = _scorer()
    adapters = [
        HeuristicModelAdapter(config["config_id"], provider=config["provider"], scorer=scorer)
        for config in _DEFAULT_RULES["ai_models"]
    ]
    item = ContentItem(content_id="demo", content=sample["content"], content_type=sample["type"])

    results = asyncio.run(Aggregator().gather(adapters, item))
    action = PolicyEngine.from_rules(_DEFAULT_RULES).decide(Aggregator.merge(results).scores, "medium")

    assert action.action.value == sample["expected_action"]
