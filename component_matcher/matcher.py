"""Component Matching Algorithm.

This module implements the three-tier matching that keeps supplier quote
imports from creating duplicate library components:
1. Exact: normalized manufacturer + part number (or manufacturer + name
   when the candidate has no part number)
2. Fuzzy: weighted edit similarity of part number, manufacturer and name
3. Semantic: a language model verifies medium-confidence fuzzy hits

Tiers run in order and the first tier that produces matches wins. A failure
in the semantic tier is recovered per candidate as "no match".
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from component_matcher.models import (
    FuzzyScore,
    MatchCandidate,
    MatchDecision,
    MatchType,
    MatchingConfig,
    UserDecision,
    DEFAULT_MATCHING_CONFIG,
)
from component_matcher.normalize import normalize_key, string_similarity
from component_matcher.semantic import SemanticMatcher
from core.models.canonical import CandidateComponent, LibraryComponent
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import (
    record_match_result,
    record_processing_time,
    record_semantic_failure,
)


logger = get_logger(__name__)

EXACT_REASONING = "Exact match on manufacturer and part number"
EXACT_NAME_REASONING = "Exact match on manufacturer and name"

ProgressCallback = Callable[[int, int], None]


class ComponentMatcher:
    """Finds library components that are the same product as extracted candidates.

    Example:
        matcher = ComponentMatcher(semantic_matcher=OpenAISemanticMatcher(api_key))
        decisions = await matcher.batch_match(result.components, library)

        for decision in decisions:
            print(decision.component_index, decision.match_type.value, len(decision.matches))
    """

    def __init__(
        self,
        semantic_matcher: Optional[SemanticMatcher] = None,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
    ):
        """Initialize the matcher.

        Args:
            semantic_matcher: Provider for the semantic tier; without one,
                medium-confidence fuzzy hits end as no match
            config: Thresholds and weights
        """
        self.semantic_matcher = semantic_matcher
        self.config = config

    # =========================================================================
    # Single candidate
    # =========================================================================

    async def match_component(
        self,
        candidate: CandidateComponent,
        library: Sequence[LibraryComponent],
        component_index: int = 0,
    ) -> MatchDecision:
        """Run the tiers for one candidate.

        Returns:
            MatchDecision with ranked matches, ``user_decision`` pending and
            ``selected_match_id`` set to the top match when there is one
        """
        match_type, matches = await self._find_matches(candidate, library, component_index)
        record_match_result(match_type.value)

        return MatchDecision(
            component_index=component_index,
            match_type=match_type,
            matches=matches,
            user_decision=UserDecision.PENDING,
            selected_match_id=matches[0].component.id if matches else None,
        )

    async def _find_matches(
        self,
        candidate: CandidateComponent,
        library: Sequence[LibraryComponent],
        component_index: int,
    ) -> Tuple[MatchType, List[MatchCandidate]]:
        # Tier 1: exact
        exact = self._exact_matches(candidate, library)
        if exact:
            logger.debug(f"Exact match found ({len(exact)})")
            return MatchType.EXACT, exact

        # Tier 2: fuzzy
        scored = self._score_library(candidate, library)
        if not scored:
            logger.debug("No fuzzy matches above threshold")
            return MatchType.NONE, []

        best_score = scored[0][1].overall_score
        top = scored[:self.config.max_candidates]

        if best_score >= self.config.high_confidence:
            logger.debug(f"High confidence fuzzy match ({best_score:.0%})")
            return MatchType.FUZZY, [
                MatchCandidate(
                    component=component,
                    confidence=score.overall_score,
                    reasoning=_fuzzy_reasoning(score),
                )
                for component, score in top
            ]

        # Tier 3: semantic verification of medium-confidence hits
        if best_score >= self.config.medium_confidence:
            if self.semantic_matcher is None:
                logger.debug("Medium confidence fuzzy match but no semantic matcher configured")
                return MatchType.NONE, []
            try:
                verified = await self._semantic_match(candidate, [c for c, _ in top])
            except Exception as e:
                record_semantic_failure()
                logger.warning(
                    "Semantic match failed, treating candidate as unmatched",
                    extra_fields={"error": str(e), "error_type": type(e).__name__},
                )
                return MatchType.NONE, []
            if verified:
                return MatchType.AI, [verified]

        return MatchType.NONE, []

    def _exact_matches(
        self,
        candidate: CandidateComponent,
        library: Sequence[LibraryComponent],
    ) -> List[MatchCandidate]:
        """Library entries whose normalized key equals the candidate's."""
        manufacturer = normalize_key(candidate.manufacturer)
        if not manufacturer:
            return []

        part_number = normalize_key(candidate.manufacturer_pn)
        if part_number:
            return [
                MatchCandidate(component=entry, confidence=1.0, reasoning=EXACT_REASONING)
                for entry in library
                if normalize_key(entry.manufacturer) == manufacturer
                and normalize_key(entry.manufacturer_pn) == part_number
            ]

        name = normalize_key(candidate.name)
        if not name:
            return []
        return [
            MatchCandidate(component=entry, confidence=1.0, reasoning=EXACT_NAME_REASONING)
            for entry in library
            if normalize_key(entry.manufacturer) == manufacturer
            and normalize_key(entry.name) == name
        ]

    def _score_library(
        self,
        candidate: CandidateComponent,
        library: Sequence[LibraryComponent],
    ) -> List[Tuple[LibraryComponent, FuzzyScore]]:
        """Score every library entry; keep those at or above min_confidence.

        Weights are spread over the fields the candidate actually has, so a
        labor item without a part number is scored on manufacturer and name.
        Result is sorted by score, ties in library order.
        """
        fields = [
            (float(self.config.part_number_weight), candidate.manufacturer_pn, "manufacturer_pn"),
            (float(self.config.manufacturer_weight), candidate.manufacturer, "manufacturer"),
            (float(self.config.name_weight), candidate.name, "name"),
        ]
        present = [(w, value, attr) for w, value, attr in fields if normalize_key(value)]
        total_weight = sum(w for w, _, _ in present)
        if not present or total_weight <= 0:
            return []

        scored = []
        for entry in library:
            similarities = {
                attr: string_similarity(value, getattr(entry, attr))
                for _, value, attr in present
            }
            overall = sum(w * similarities[attr] for w, _, attr in present) / total_weight
            overall = min(round(overall, 4), 1.0)
            if overall < self.config.min_confidence:
                continue
            scored.append((entry, FuzzyScore(
                manufacturer_similarity=similarities.get("manufacturer", 0.0),
                part_number_similarity=similarities.get("manufacturer_pn", 0.0),
                name_similarity=similarities.get("name", 0.0),
                overall_score=overall,
            )))

        scored.sort(key=lambda pair: pair[1].overall_score, reverse=True)
        return scored

    async def _semantic_match(
        self,
        candidate: CandidateComponent,
        entries: List[LibraryComponent],
    ) -> Optional[MatchCandidate]:
        """Best semantically verified entry, or None.

        Any exception from the semantic matcher propagates to the caller.
        """
        accepted = []
        for entry in entries:
            verdict = await self.semantic_matcher.compare(candidate, entry)
            if verdict.is_match and verdict.confidence >= self.config.ai_accept_confidence:
                accepted.append(MatchCandidate(
                    component=entry,
                    confidence=verdict.confidence,
                    reasoning=f"AI verified: {verdict.reasoning}",
                ))

        if not accepted:
            return None
        accepted.sort(key=lambda m: m.confidence, reverse=True)
        return accepted[0]

    # =========================================================================
    # Batch
    # =========================================================================

    async def batch_match(
        self,
        candidates: Sequence[CandidateComponent],
        library: Sequence[LibraryComponent],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[MatchDecision]:
        """Match every candidate; decisions come back in component_index order.

        Candidates are processed one at a time unless ``config.concurrency``
        is above 1, in which case at most that many run at once.

        Args:
            candidates: Extracted candidates, indexed by position
            library: Current library snapshot
            on_progress: Called with (completed, total) after each candidate
        """
        start = time.time()
        total = len(candidates)
        completed = 0

        async def run_one(index: int, candidate: CandidateComponent) -> MatchDecision:
            nonlocal completed
            with with_correlation(component_index=index, stage="matching"):
                decision = await self.match_component(candidate, library, component_index=index)
            completed += 1
            if on_progress:
                on_progress(completed, total)
            return decision

        if self.config.concurrency <= 1:
            decisions = []
            for index, candidate in enumerate(candidates):
                decisions.append(await run_one(index, candidate))
        else:
            semaphore = asyncio.Semaphore(self.config.concurrency)

            async def bounded(index: int, candidate: CandidateComponent) -> MatchDecision:
                async with semaphore:
                    return await run_one(index, candidate)

            decisions = list(await asyncio.gather(
                *(bounded(i, c) for i, c in enumerate(candidates))
            ))

        duration_ms = (time.time() - start) * 1000
        record_processing_time("matching", duration_ms)
        logger.info(
            f"Matched {total} candidate(s)",
            extra_fields={"summary": summarize_decisions(decisions), "duration_ms": round(duration_ms, 1)},
        )
        return decisions


def _fuzzy_reasoning(score: FuzzyScore) -> str:
    return (
        f"Fuzzy match: Manufacturer {score.manufacturer_similarity:.0%}, "
        f"PN {score.part_number_similarity:.0%}, Name {score.name_similarity:.0%}"
    )


def summarize_decisions(decisions: Sequence[MatchDecision]) -> Dict[str, int]:
    """Count decisions per match type."""
    counts = {match_type.value: 0 for match_type in MatchType}
    for decision in decisions:
        counts[decision.match_type.value] += 1
    return counts


def explain_decision(decision: MatchDecision, candidate: Optional[CandidateComponent] = None) -> str:
    """Generate a human-readable explanation of a match decision.

    Args:
        decision: The decision to explain
        candidate: The extracted candidate, for context

    Returns:
        Formatted explanation string
    """
    lines = ["=" * 60, f"Match Decision #{decision.component_index}", "=" * 60]

    if candidate is not None:
        lines.append(f"Name: '{candidate.name}'")
        lines.append(f"Manufacturer: '{candidate.manufacturer or ''}'")
        lines.append(f"Part number: '{candidate.manufacturer_pn or ''}'")
        lines.append("")

    lines.append(f"Match type: {decision.match_type.value}")
    lines.append(f"Decision: {decision.user_decision.value}")

    if decision.matches:
        lines.append("")
        lines.append("Matches:")
        for i, match in enumerate(decision.matches):
            marker = "*" if match.component.id == decision.selected_match_id else " "
            lines.append(f" {marker}{i+1}. {match.component.name} ({match.component.manufacturer_pn or '-'})")
            lines.append(f"     Confidence: {match.confidence:.0%}")
            lines.append(f"     {match.reasoning}")
    else:
        lines.append("No library match; will be created as a new component")

    lines.append("=" * 60)
    return "\n".join(lines)
