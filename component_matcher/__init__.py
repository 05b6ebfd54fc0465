"""Component Matcher - duplicate detection for supplier quote imports.

This package matches extracted candidates against the component library:
- Exact key matching (fast path)
- Fuzzy matching with weighted edit similarity
- Semantic verification of medium-confidence hits

Usage:
    from component_matcher import ComponentMatcher

    matcher = ComponentMatcher(semantic_matcher=semantic)
    decisions = await matcher.batch_match(candidates, library)

    for decision in decisions:
        if decision.is_pending:
            # Operator picks accept_match or create_new
            ...
"""

from component_matcher.models import (
    MatchCandidate,
    MatchDecision,
    MatchType,
    MatchingConfig,
    SemanticComparison,
    UserDecision,
    DEFAULT_MATCHING_CONFIG,
)
from component_matcher.matcher import ComponentMatcher, explain_decision, summarize_decisions
from component_matcher.normalize import normalize_key, string_similarity
from component_matcher.semantic import SemanticMatcher, OpenAISemanticMatcher

__all__ = [
    # Models
    "MatchCandidate",
    "MatchDecision",
    "MatchType",
    "MatchingConfig",
    "SemanticComparison",
    "UserDecision",
    "DEFAULT_MATCHING_CONFIG",
    # Matcher
    "ComponentMatcher",
    "explain_decision",
    "summarize_decisions",
    # Normalization
    "normalize_key",
    "string_similarity",
    # Semantic
    "SemanticMatcher",
    "OpenAISemanticMatcher",
]
