"""Reconciliation state and events.

The reconciliation state is the operator's working copy of one extraction
batch: surviving candidates, their match decisions and the global margin.
It is changed only through the events below, applied by
``reconciliation.engine.apply``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from component_matcher.models import MatchDecision, UserDecision
from core.models.canonical import CandidateComponent, CanonicalBase, Currency
from extraction.models import ExtractionMetadata


class CandidateStatus(str, Enum):
    """Review status of a candidate."""
    APPROVED = "approved"
    MODIFIED = "modified"
    REJECTED = "rejected"


class PricingMode(str, Enum):
    """How prices in the document relate to MSRP.

    COLUMN: the document has separate partner and MSRP columns
    DISCOUNT: the document lists MSRP and the operator supplies a discount
    NONE: plain unit prices
    """
    COLUMN = "column"
    DISCOUNT = "discount"
    NONE = "none"


class MsrpImportOptions(CanonicalBase):
    """Operator choices about MSRP handling made before extraction."""
    mode: PricingMode = Field(default=PricingMode.NONE)
    partner_discount_percent: Optional[Decimal] = Field(default=None, alias="partnerDiscountPercent")
    msrp_currency: Currency = Field(default=Currency.USD, alias="msrpCurrency")


class PreviewCandidate(CandidateComponent):
    """A candidate under review.

    Attributes:
        id: Stable identifier (``extracted-<original_index>``)
        original_index: Position in the extraction; never renumbered
        status: Review status
        is_editing: Whether the operator has the row open for editing
        match_decision: The same object held in ReconciliationState.decisions
        margin_percent: Margin last applied to this row
        has_margin_override: Set by a per-item margin change; never cleared
    """
    id: str
    original_index: int
    status: CandidateStatus = Field(default=CandidateStatus.APPROVED)
    is_editing: bool = False
    match_decision: Optional[MatchDecision] = None
    margin_percent: Optional[Decimal] = None
    has_margin_override: bool = False


class ReconciliationState(CanonicalBase):
    """Everything the reducer operates on."""
    candidates: List[PreviewCandidate] = Field(default_factory=list)
    decisions: List[MatchDecision] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)
    msrp_options: MsrpImportOptions = Field(default_factory=MsrpImportOptions)
    global_margin_percent: Decimal = Field(default=Decimal("25"))
    rejected_ids: List[str] = Field(default_factory=list)

    def find_candidate(self, candidate_id: str) -> Optional[PreviewCandidate]:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    def find_decision(self, component_index: int) -> Optional[MatchDecision]:
        for decision in self.decisions:
            if decision.component_index == component_index:
                return decision
        return None


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class EditField:
    """Set one field of a candidate; marks it modified."""
    candidate_id: str
    field: str
    value: Any


@dataclass(frozen=True)
class ToggleEditing:
    candidate_id: str


@dataclass(frozen=True)
class SetStatus:
    """Set a candidate's status directly; REJECTED behaves as DeleteCandidate."""
    candidate_id: str
    status: CandidateStatus


@dataclass(frozen=True)
class DeleteCandidate:
    """Reject a candidate and retire its match decision."""
    candidate_id: str


@dataclass(frozen=True)
class DecideMatch:
    """Resolve a match decision to accept_match or create_new."""
    component_index: int
    decision: UserDecision


@dataclass(frozen=True)
class SelectMatch:
    """Choose which ranked match an accepted decision merges into."""
    component_index: int
    match_id: str


@dataclass(frozen=True)
class BulkEdit:
    """Fill empty manufacturer/supplier fields on every candidate."""
    manufacturer: str = ""
    supplier: str = ""


@dataclass(frozen=True)
class GlobalMarginChange:
    margin_percent: Decimal


@dataclass(frozen=True)
class ItemMarginChange:
    candidate_id: str
    margin_percent: Decimal


@dataclass(frozen=True)
class ReversePartNumber:
    """Apply the run-order reversal to a candidate's part number."""
    candidate_id: str


@dataclass
class ConfirmedImport:
    """Candidates and decisions released by the validation gate."""
    candidates: List[PreviewCandidate]
    decisions: List[MatchDecision]
    metadata: ExtractionMetadata

    @property
    def decisions_by_index(self) -> Dict[int, MatchDecision]:
        return {d.component_index: d for d in self.decisions}
