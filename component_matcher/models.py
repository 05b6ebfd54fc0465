"""Component Matcher Data Models.

This module defines the Pydantic models for component matching:
- MatchCandidate: A library component proposed as the same product
- MatchDecision: Ranked matches for one extracted candidate plus the operator's choice
- SemanticComparison: Verdict of the semantic matcher for one pair
- MatchingConfig: Thresholds and weights for the tiers
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from core.models.canonical import LibraryComponent


class MatchType(str, Enum):
    """Which tier produced the matches."""
    EXACT = "exact"    # Normalized manufacturer + part number (or name) equality
    FUZZY = "fuzzy"    # Weighted string similarity above the high threshold
    AI = "ai"          # Semantic matcher verified a medium-confidence fuzzy hit
    NONE = "none"      # Nothing found, or the semantic tier failed


class UserDecision(str, Enum):
    """Operator's resolution of a match decision."""
    PENDING = "pending"
    ACCEPT_MATCH = "accept_match"
    CREATE_NEW = "create_new"


class FuzzyScore(BaseModel):
    """Per-field similarity behind a fuzzy score (all 0..1)."""
    manufacturer_similarity: float = 0.0
    part_number_similarity: float = 0.0
    name_similarity: float = 0.0
    overall_score: float = 0.0


class MatchCandidate(BaseModel):
    """A library component that may be the same product as a candidate.

    Attributes:
        component: The library component
        confidence: Match confidence (0..1)
        reasoning: Human-readable explanation
    """
    component: LibraryComponent
    confidence: float = Field(..., ge=0.0, le=1.0, description="Match confidence (0-1)")
    reasoning: str = Field(default="", description="Why this component matched")


class MatchDecision(BaseModel):
    """Match outcome for one extracted candidate.

    ``component_index`` is the candidate's position in the original
    extraction and never changes when other candidates are deleted.
    A decision with no matches has ``match_type == NONE`` and never blocks
    finalize.
    """
    component_index: int = Field(..., description="Original extraction index")
    match_type: MatchType = Field(default=MatchType.NONE)
    matches: List[MatchCandidate] = Field(default_factory=list, description="Ranked, highest first")
    user_decision: UserDecision = Field(default=UserDecision.PENDING)
    selected_match_id: Optional[str] = Field(default=None, description="Library id chosen by the operator")

    @property
    def has_matches(self) -> bool:
        return bool(self.matches)

    @property
    def is_pending(self) -> bool:
        """True when the operator still has to choose."""
        return self.has_matches and self.user_decision == UserDecision.PENDING

    @property
    def top_match(self) -> Optional[MatchCandidate]:
        return self.matches[0] if self.matches else None

    def resolve_target(self) -> Optional[MatchCandidate]:
        """The selected match, falling back to the top-ranked one."""
        if self.selected_match_id:
            for match in self.matches:
                if match.component.id == self.selected_match_id:
                    return match
        return self.top_match


class SemanticComparison(BaseModel):
    """Semantic matcher verdict for one candidate/library pair."""
    is_match: bool = Field(default=False)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = Field(default="")


# =============================================================================
# Matching Configuration
# =============================================================================

class MatchingConfig(BaseModel):
    """Configuration for the component matching tiers.

    Controls thresholds and weights for fuzzy and semantic matching.
    """
    # Fuzzy score thresholds (0..1)
    min_confidence: float = Field(default=0.6, description="Min fuzzy score to be a candidate")
    medium_confidence: float = Field(default=0.7, description="Min best score to ask the semantic matcher")
    high_confidence: float = Field(default=0.9, description="Min best score to accept fuzzy matches")

    # Semantic acceptance
    ai_accept_confidence: float = Field(default=0.85, description="Min semantic confidence to accept")

    # Field weights (sum to 1)
    part_number_weight: Decimal = Field(default=Decimal("0.5"))
    manufacturer_weight: Decimal = Field(default=Decimal("0.3"))
    name_weight: Decimal = Field(default=Decimal("0.2"))

    # Behavior
    max_candidates: int = Field(default=3, description="Max fuzzy matches returned or verified")
    concurrency: int = Field(default=1, ge=1, description="Candidates matched in parallel")


# Default matching config
DEFAULT_MATCHING_CONFIG = MatchingConfig()
