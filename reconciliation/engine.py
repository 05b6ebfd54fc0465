"""Reconciliation engine.

Exposes:
- build_initial_state(result, decisions, msrp_options) -> ReconciliationState
- apply(state, event) -> ReconciliationState
- get_pending_decisions(state) -> List[MatchDecision]

``apply`` is a pure reducer: it deep-copies the state, applies one event to
the copy and returns it. The copy keeps each candidate's ``match_decision``
and the matching entry of ``state.decisions`` as one shared object.
"""

import copy
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from component_matcher.models import MatchDecision, UserDecision
from core.errors import UnknownCandidateError
from core.models.canonical import (
    ComponentType,
    Currency,
    LaborSubtype,
    Money,
    _parse_currency,
    _parse_date,
    _parse_decimal,
)
from extraction.models import ExtractionResult
from extraction.part_numbers import reverse_part_number
from pricing.normalizer import compute_discount_from_prices, compute_partner_from_msrp
from reconciliation.models import (
    BulkEdit,
    CandidateStatus,
    DecideMatch,
    DeleteCandidate,
    EditField,
    GlobalMarginChange,
    ItemMarginChange,
    MsrpImportOptions,
    PreviewCandidate,
    PricingMode,
    ReconciliationState,
    ReversePartNumber,
    SelectMatch,
    SetStatus,
    ToggleEditing,
)


DEFAULT_GLOBAL_MARGIN = Decimal("25")

HUNDRED = Decimal("100")


# =============================================================================
# Initial State
# =============================================================================

def candidate_id_for(index: int) -> str:
    return f"extracted-{index}"


def build_initial_state(
    result: ExtractionResult,
    decisions: Sequence[MatchDecision] = (),
    msrp_options: Optional[MsrpImportOptions] = None,
    default_margin: Decimal = DEFAULT_GLOBAL_MARGIN,
) -> ReconciliationState:
    """Build the preview state for an extraction result and its match decisions.

    Pricing is prepared per row:
    - A row with an MSRP gets ``partner_discount_percent`` derived from the
      MSRP and the partner price in the MSRP currency
    - In discount mode, a row without an MSRP takes its price in the MSRP
      currency as the MSRP and the partner price is MSRP x (1 - d / 100)
    - Otherwise prices are left as extracted

    Args:
        result: Extraction result
        decisions: Match decisions keyed by ``component_index``
        msrp_options: Operator MSRP choices
        default_margin: Global margin when the options carry no discount

    Returns:
        ReconciliationState with every candidate approved
    """
    options = msrp_options or MsrpImportOptions()
    decisions = list(decisions)
    by_index = {d.component_index: d for d in decisions}

    candidates = []
    for index, component in enumerate(result.components):
        candidate = PreviewCandidate(
            **component.model_dump(),
            id=candidate_id_for(index),
            original_index=index,
            status=CandidateStatus.APPROVED,
            match_decision=by_index.get(index),
        )
        _prepare_pricing(candidate, options)
        candidates.append(candidate)

    global_margin = options.partner_discount_percent
    if global_margin is None:
        global_margin = default_margin

    return ReconciliationState(
        candidates=candidates,
        decisions=decisions,
        metadata=result.metadata.model_copy(),
        msrp_options=options,
        global_margin_percent=global_margin,
    )


def _prepare_pricing(candidate: PreviewCandidate, options: MsrpImportOptions) -> None:
    if candidate.msrp is not None:
        partner = candidate.prices.get(candidate.msrp.currency)
        discount = compute_discount_from_prices(candidate.msrp.amount, partner)
        if discount is not None:
            candidate.partner_discount_percent = discount
        return

    discount = options.partner_discount_percent
    if options.mode == PricingMode.DISCOUNT and discount:
        list_price = candidate.prices.get(options.msrp_currency)
        if list_price:
            candidate.msrp = Money(currency=options.msrp_currency, amount=list_price)
            candidate.partner_discount_percent = discount
            partner = list_price * (1 - discount / HUNDRED)
            candidate.prices = candidate.prices.model_copy(
                update={_price_field(options.msrp_currency): partner}
            )


def _price_field(currency: Currency) -> str:
    return Currency(currency).value.lower()


# =============================================================================
# Queries
# =============================================================================

def get_pending_decisions(state: ReconciliationState) -> List[MatchDecision]:
    """Active decisions that still need an operator choice."""
    return [d for d in state.decisions if d.is_pending]


# =============================================================================
# Reducer
# =============================================================================

def apply(state: ReconciliationState, event) -> ReconciliationState:
    """Apply one event and return the new state; ``state`` is not modified.

    Raises:
        UnknownCandidateError: Event refers to a deleted or unknown candidate
        ValueError: Event is not valid for the current state
        TypeError: Unsupported event
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unsupported reconciliation event: {type(event).__name__}")

    new_state = copy.deepcopy(state)
    handler(new_state, event)
    return new_state


def _candidate(state: ReconciliationState, candidate_id: str) -> PreviewCandidate:
    candidate = state.find_candidate(candidate_id)
    if candidate is None:
        raise UnknownCandidateError(candidate_id)
    return candidate


def _decision(state: ReconciliationState, component_index: int) -> MatchDecision:
    decision = state.find_decision(component_index)
    if decision is None:
        raise UnknownCandidateError(component_index)
    return decision


# -----------------------------------------------------------------------------
# Field edits
# -----------------------------------------------------------------------------

_TEXT_FIELDS = {
    "name", "description", "manufacturer", "manufacturer_pn",
    "category", "supplier", "notes",
}

_PRICE_FIELDS = {
    "unit_price_nis": "nis",
    "unit_price_usd": "usd",
    "unit_price_eur": "eur",
}


def _optional(parser: Callable) -> Callable:
    return lambda value: None if value in (None, "") else parser(value)


_VALUE_PARSERS: Dict[str, Callable] = {
    "quantity": _parse_decimal,
    "partner_discount_percent": _parse_decimal,
    "quote_date": _parse_date,
    "currency": _optional(lambda v: Currency(_parse_currency(v))),
    "component_type": ComponentType,
    "labor_subtype": _optional(LaborSubtype),
}

EDITABLE_FIELDS = frozenset(
    _TEXT_FIELDS | set(_PRICE_FIELDS) | set(_VALUE_PARSERS) | {"msrp_price", "msrp_currency"}
)


def _set_field(candidate: PreviewCandidate, field: str, value) -> None:
    if field in _TEXT_FIELDS:
        if field == "name":
            value = "" if value is None else str(value)
        setattr(candidate, field, value)
    elif field in _PRICE_FIELDS:
        candidate.prices = candidate.prices.model_copy(
            update={_PRICE_FIELDS[field]: _parse_decimal(value)}
        )
    elif field == "msrp_price":
        amount = _parse_decimal(value)
        if amount is None:
            candidate.msrp = None
        else:
            currency = candidate.msrp.currency if candidate.msrp else (candidate.currency or Currency.USD)
            candidate.msrp = Money(currency=currency, amount=amount)
    elif field == "msrp_currency":
        currency = Currency(_parse_currency(value))
        if candidate.msrp is not None:
            candidate.msrp = Money(currency=currency, amount=candidate.msrp.amount)
    else:
        setattr(candidate, field, _VALUE_PARSERS[field](value))


def _edit_field(state: ReconciliationState, event: EditField) -> None:
    if event.field not in EDITABLE_FIELDS:
        raise ValueError(f"Field '{event.field}' is not editable")
    candidate = _candidate(state, event.candidate_id)
    _set_field(candidate, event.field, event.value)
    candidate.status = CandidateStatus.MODIFIED


def _toggle_editing(state: ReconciliationState, event: ToggleEditing) -> None:
    candidate = _candidate(state, event.candidate_id)
    candidate.is_editing = not candidate.is_editing


def _reverse_part_number(state: ReconciliationState, event: ReversePartNumber) -> None:
    candidate = _candidate(state, event.candidate_id)
    if not candidate.manufacturer_pn:
        return
    candidate.manufacturer_pn = reverse_part_number(candidate.manufacturer_pn)
    candidate.potential_rtl_issue = False
    candidate.rtl_issue_reason = None
    candidate.status = CandidateStatus.MODIFIED


# -----------------------------------------------------------------------------
# Status and deletion
# -----------------------------------------------------------------------------

def _delete_candidate(state: ReconciliationState, event: DeleteCandidate) -> None:
    candidate = _candidate(state, event.candidate_id)
    state.candidates = [c for c in state.candidates if c.id != candidate.id]
    state.decisions = [d for d in state.decisions if d.component_index != candidate.original_index]
    state.rejected_ids.append(candidate.id)


def _set_status(state: ReconciliationState, event: SetStatus) -> None:
    status = CandidateStatus(event.status)
    if status == CandidateStatus.REJECTED:
        _delete_candidate(state, DeleteCandidate(event.candidate_id))
        return
    candidate = _candidate(state, event.candidate_id)
    candidate.status = status
    candidate.is_editing = False


# -----------------------------------------------------------------------------
# Match decisions
# -----------------------------------------------------------------------------

def _link(state: ReconciliationState, decision: MatchDecision) -> None:
    for candidate in state.candidates:
        if candidate.original_index == decision.component_index:
            candidate.match_decision = decision


def _decide_match(state: ReconciliationState, event: DecideMatch) -> None:
    decision = _decision(state, event.component_index)
    choice = UserDecision(event.decision)
    if choice == UserDecision.PENDING:
        raise ValueError("A match decision cannot be returned to pending")
    if choice == UserDecision.ACCEPT_MATCH and not decision.has_matches:
        raise ValueError(f"Candidate {event.component_index} has no matches to accept")
    decision.user_decision = choice
    _link(state, decision)


def _select_match(state: ReconciliationState, event: SelectMatch) -> None:
    decision = _decision(state, event.component_index)
    if not any(m.component.id == event.match_id for m in decision.matches):
        raise ValueError(f"'{event.match_id}' is not a match for candidate {event.component_index}")
    decision.selected_match_id = event.match_id
    _link(state, decision)


# -----------------------------------------------------------------------------
# Bulk edit and margins
# -----------------------------------------------------------------------------

def _bulk_edit(state: ReconciliationState, event: BulkEdit) -> None:
    if not event.manufacturer and not event.supplier:
        return
    for candidate in state.candidates:
        if event.manufacturer and not candidate.manufacturer:
            candidate.manufacturer = event.manufacturer
        if event.supplier and not candidate.supplier:
            candidate.supplier = event.supplier
        if candidate.status == CandidateStatus.APPROVED:
            candidate.status = CandidateStatus.MODIFIED


def _apply_margin(candidate: PreviewCandidate, margin_percent: Decimal) -> bool:
    if candidate.msrp is None:
        return False
    candidate.prices = compute_partner_from_msrp(
        candidate.msrp.amount, candidate.msrp.currency, margin_percent
    )
    candidate.partner_discount_percent = margin_percent
    candidate.margin_percent = margin_percent
    candidate.status = CandidateStatus.MODIFIED
    return True


def _global_margin(state: ReconciliationState, event: GlobalMarginChange) -> None:
    margin = _parse_decimal(event.margin_percent)
    state.global_margin_percent = margin
    for candidate in state.candidates:
        if not candidate.has_margin_override:
            _apply_margin(candidate, margin)


def _item_margin(state: ReconciliationState, event: ItemMarginChange) -> None:
    candidate = _candidate(state, event.candidate_id)
    if _apply_margin(candidate, _parse_decimal(event.margin_percent)):
        candidate.has_margin_override = True


_HANDLERS = {
    EditField: _edit_field,
    ToggleEditing: _toggle_editing,
    SetStatus: _set_status,
    DeleteCandidate: _delete_candidate,
    DecideMatch: _decide_match,
    SelectMatch: _select_match,
    BulkEdit: _bulk_edit,
    GlobalMarginChange: _global_margin,
    ItemMarginChange: _item_margin,
    ReversePartNumber: _reverse_part_number,
}

