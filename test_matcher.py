"""
Component matching tests.

Covers the exact, fuzzy and semantic tiers, recovery from semantic
failures and ordering of batch results.
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock

import openai

from component_matcher import (
    ComponentMatcher,
    MatchType,
    MatchingConfig,
    OpenAISemanticMatcher,
    SemanticComparison,
    UserDecision,
    explain_decision,
    normalize_key,
    string_similarity,
    summarize_decisions,
)
from component_matcher.matcher import EXACT_NAME_REASONING, EXACT_REASONING
from component_matcher.semantic import parse_comparison
from core.errors import MatchingFailure
from core.models.canonical import CandidateComponent, ComponentType, LibraryComponent
from core.observability.metrics import MetricsCollector


@pytest.fixture
def library():
    return [
        LibraryComponent(
            id="c1", name="S7-1200 CPU", manufacturer="Siemens",
            manufacturer_pn="6ES7214-1AG40-0XB0", category="plc",
        ),
        LibraryComponent(
            id="c2", name="Proximity sensor", manufacturer="Festo",
            manufacturer_pn="SME-8M-DS-24V", category="sensors",
        ),
        LibraryComponent(
            id="c3", name="Installation Labor", manufacturer="Acme",
            component_type=ComponentType.LABOR, category="labor",
        ),
        LibraryComponent(
            id="c4", name="S7-1200 CPU", manufacturer="Siemens",
            manufacturer_pn="6ES7214-1AG40", category="plc",
        ),
    ]


class FakeSemanticMatcher:
    """Returns a fixed verdict and records the pairs it was asked about."""

    def __init__(self, verdict=None, error=None, delay=0.0):
        self.verdict = verdict
        self.error = error
        self.delay = delay
        self.calls = []

    async def compare(self, candidate, entry):
        self.calls.append((candidate.name, entry.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.verdict


def _medium_candidate():
    # Scores ~0.75 against c1 and no other entry qualifies
    return CandidateComponent(name="Controller", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40")


def _medium_library(library):
    return [c for c in library if c.id != "c4"]


class TestNormalization:
    """Key normalization and similarity."""

    def test_normalize_key(self):
        assert normalize_key("6ES7 512-1DK01-0AB0") == "6es75121dk010ab0"
        assert normalize_key(" Festo  AG ") == "festoag"
        assert normalize_key(None) == ""

    def test_hebrew_letters_kept(self):
        assert normalize_key("חיישן קרבה") == "חיישןקרבה"

    def test_similarity_bounds(self):
        assert string_similarity("Siemens", "SIEMENS") == 1.0
        assert string_similarity("", "Siemens") == 0.0
        assert 0.0 < string_similarity("6ES7214-1AG40", "6ES7214-1AG40-0XB0") < 1.0


class TestExactTier:
    """Exact manufacturer + part number (or name) matches."""

    def test_exact_part_number(self, library):
        matcher = ComponentMatcher()
        candidate = CandidateComponent(name="CPU", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40")
        decision = asyncio.run(matcher.match_component(candidate, library, component_index=0))

        assert decision.match_type == MatchType.EXACT
        assert len(decision.matches) == 1
        assert decision.matches[0].component.id == "c4"
        assert decision.matches[0].confidence == 1.0
        assert decision.matches[0].reasoning == EXACT_REASONING
        assert decision.user_decision == UserDecision.PENDING
        assert decision.selected_match_id == "c4"

    def test_exact_ignores_case_and_punctuation(self, library):
        matcher = ComponentMatcher()
        candidate = CandidateComponent(name="CPU", manufacturer="SIEMENS", manufacturer_pn="6es7 214 1ag40")
        decision = asyncio.run(matcher.match_component(candidate, library))
        assert decision.match_type == MatchType.EXACT
        assert decision.matches[0].component.id == "c4"

    def test_exact_name_without_part_number(self, library):
        matcher = ComponentMatcher()
        candidate = CandidateComponent(name="installation labor", manufacturer="ACME")
        decision = asyncio.run(matcher.match_component(candidate, library))
        assert decision.match_type == MatchType.EXACT
        assert decision.matches[0].component.id == "c3"
        assert decision.matches[0].reasoning == EXACT_NAME_REASONING

    def test_no_manufacturer_skips_exact(self, library):
        matcher = ComponentMatcher()
        candidate = CandidateComponent(name="S7-1200 CPU", manufacturer_pn="6ES7214-1AG40")
        decision = asyncio.run(matcher.match_component(candidate, library))
        assert decision.match_type != MatchType.EXACT


class TestFuzzyTier:
    """Weighted similarity above the high threshold."""

    def test_high_confidence_fuzzy(self, library):
        matcher = ComponentMatcher()
        candidate = CandidateComponent(
            name="S7-1200 CPU", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40-0XB1",
        )
        decision = asyncio.run(matcher.match_component(candidate, library))

        assert decision.match_type == MatchType.FUZZY
        assert decision.matches[0].component.id == "c1"
        assert decision.matches[0].confidence >= 0.9
        assert len(decision.matches) <= 3
        confidences = [m.confidence for m in decision.matches]
        assert confidences == sorted(confidences, reverse=True)
        assert decision.matches[0].reasoning.startswith("Fuzzy match")

    def test_ties_keep_library_order(self):
        twins = [
            LibraryComponent(id="a", name="Relay", manufacturer="Finder", manufacturer_pn="40.52.9.024"),
            LibraryComponent(id="b", name="Relay", manufacturer="Finder", manufacturer_pn="40.52.9.024"),
        ]
        candidate = CandidateComponent(name="Relay", manufacturer="Finder", manufacturer_pn="40.52.9.0240")
        decision = asyncio.run(ComponentMatcher().match_component(candidate, twins))
        assert decision.match_type == MatchType.FUZZY
        assert [m.component.id for m in decision.matches] == ["a", "b"]

    def test_nothing_similar(self, library):
        candidate = CandidateComponent(name="Gripper", manufacturer="Schunk", manufacturer_pn="PGN-plus-P 100")
        decision = asyncio.run(ComponentMatcher().match_component(candidate, library))
        assert decision.match_type == MatchType.NONE
        assert decision.matches == []
        assert decision.selected_match_id is None
        assert not decision.is_pending


class TestSemanticTier:
    """Medium-confidence hits are verified by the semantic matcher."""

    def test_medium_without_semantic_matcher(self, library):
        decision = asyncio.run(ComponentMatcher().match_component(_medium_candidate(), _medium_library(library)))
        assert decision.match_type == MatchType.NONE
        assert decision.matches == []

    def test_semantic_accepts(self, library):
        semantic = FakeSemanticMatcher(SemanticComparison(is_match=True, confidence=0.92, reasoning="Same CPU"))
        matcher = ComponentMatcher(semantic_matcher=semantic)
        decision = asyncio.run(matcher.match_component(_medium_candidate(), _medium_library(library)))

        assert decision.match_type == MatchType.AI
        assert len(decision.matches) == 1
        assert decision.matches[0].component.id == "c1"
        assert decision.matches[0].confidence == 0.92
        assert decision.matches[0].reasoning == "AI verified: Same CPU"
        assert semantic.calls == [("Controller", "c1")]

    def test_semantic_low_confidence_rejected(self, library):
        semantic = FakeSemanticMatcher(SemanticComparison(is_match=True, confidence=0.8, reasoning="Maybe"))
        matcher = ComponentMatcher(semantic_matcher=semantic)
        decision = asyncio.run(matcher.match_component(_medium_candidate(), _medium_library(library)))
        assert decision.match_type == MatchType.NONE

    def test_semantic_not_a_match(self, library):
        semantic = FakeSemanticMatcher(SemanticComparison(is_match=False, confidence=0.95, reasoning="Different"))
        matcher = ComponentMatcher(semantic_matcher=semantic)
        decision = asyncio.run(matcher.match_component(_medium_candidate(), _medium_library(library)))
        assert decision.match_type == MatchType.NONE

    def test_semantic_failure_recovered(self, library):
        semantic = FakeSemanticMatcher(error=MatchingFailure("quota exceeded"))
        matcher = ComponentMatcher(semantic_matcher=semantic)
        failures_before = MetricsCollector.instance().get_summary()["matches"]["semantic_failures"]

        decision = asyncio.run(matcher.match_component(_medium_candidate(), _medium_library(library)))

        assert decision.match_type == MatchType.NONE
        assert decision.matches == []
        failures_after = MetricsCollector.instance().get_summary()["matches"]["semantic_failures"]
        assert failures_after == failures_before + 1

    def test_high_confidence_skips_semantic(self, library):
        semantic = FakeSemanticMatcher(error=RuntimeError("should not be called"))
        candidate = CandidateComponent(
            name="S7-1200 CPU", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40-0XB1",
        )
        decision = asyncio.run(ComponentMatcher(semantic_matcher=semantic).match_component(candidate, library))
        assert decision.match_type == MatchType.FUZZY
        assert semantic.calls == []


class TestBatchMatch:
    """Batch results come back in component_index order."""

    def _candidates(self):
        return [
            CandidateComponent(name="CPU", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40"),
            _medium_candidate(),
            CandidateComponent(name="Gripper", manufacturer="Schunk", manufacturer_pn="PGN-plus-P 100"),
        ]

    def test_sequential_batch(self, library):
        progress = []
        semantic = FakeSemanticMatcher(error=MatchingFailure("offline"))
        matcher = ComponentMatcher(semantic_matcher=semantic)
        decisions = asyncio.run(matcher.batch_match(
            self._candidates(), _medium_library(library),
            on_progress=lambda done, total: progress.append((done, total)),
        ))

        assert [d.component_index for d in decisions] == [0, 1, 2]
        assert [d.match_type for d in decisions] == [MatchType.NONE, MatchType.NONE, MatchType.NONE]
        assert len(semantic.calls) == 2
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_concurrent_batch_preserves_order(self, library):
        semantic = FakeSemanticMatcher(
            SemanticComparison(is_match=True, confidence=0.9, reasoning="Same"), delay=0.05,
        )
        matcher = ComponentMatcher(semantic_matcher=semantic, config=MatchingConfig(concurrency=3))
        candidates = [_medium_candidate(), self._candidates()[2], _medium_candidate()]
        decisions = asyncio.run(matcher.batch_match(candidates, _medium_library(library)))

        assert [d.component_index for d in decisions] == [0, 1, 2]
        assert [d.match_type for d in decisions] == [MatchType.AI, MatchType.NONE, MatchType.AI]

    def test_summarize_and_explain(self, library):
        decisions = asyncio.run(ComponentMatcher().batch_match(self._candidates(), library))
        counts = summarize_decisions(decisions)
        assert sum(counts.values()) == 3
        assert counts["exact"] == 2
        assert counts["none"] == 1

        text = explain_decision(decisions[0], self._candidates()[0])
        assert "Match type: exact" in text
        assert "*1." in text


class TestOpenAISemanticMatcher:
    """OpenAI-backed semantic matcher with an injected client."""

    def _client(self, content=None, side_effect=None):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = content
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response, side_effect=side_effect)
        return client

    def test_parses_verdict(self, library):
        client = self._client('{"isMatch": true, "confidence": 0.93, "reasoning": "Same part"}')
        matcher = OpenAISemanticMatcher(api_key="test", client=client)
        verdict = asyncio.run(matcher.compare(_medium_candidate(), library[0]))
        assert verdict.is_match
        assert verdict.confidence == 0.93
        assert verdict.reasoning == "Same part"

    def test_api_error_raises_matching_failure(self, library):
        client = self._client(side_effect=openai.OpenAIError("boom"))
        matcher = OpenAISemanticMatcher(api_key="test", client=client)
        with pytest.raises(MatchingFailure):
            asyncio.run(matcher.compare(_medium_candidate(), library[0]))

    def test_parse_comparison_rejects_prose(self):
        with pytest.raises(MatchingFailure):
            parse_comparison("I think they are the same")

    def test_parse_comparison_clamps_confidence(self):
        verdict = parse_comparison('Answer: {"isMatch": true, "confidence": 1.7}')
        assert verdict.confidence == 1.0
