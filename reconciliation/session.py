"""Reconciliation session.

A ReconciliationSession owns the current ReconciliationState for one
extraction batch, the category list offered to the operator and the
subscription that keeps that list fresh. Every change goes through
``dispatch`` and the pure reducer in ``reconciliation.engine``.
"""

import uuid
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from component_matcher.models import MatchDecision, UserDecision
from core.errors import ValidationFailure
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from extraction.models import ExtractionResult
from reconciliation import engine
from reconciliation.models import (
    BulkEdit,
    CandidateStatus,
    ConfirmedImport,
    DecideMatch,
    DeleteCandidate,
    EditField,
    GlobalMarginChange,
    ItemMarginChange,
    MsrpImportOptions,
    ReconciliationState,
    ReversePartNumber,
    SelectMatch,
    SetStatus,
    ToggleEditing,
)


logger = get_logger(__name__)

CategoryListener = Callable[[List[str]], None]


# =============================================================================
# Category Provider
# =============================================================================

class Subscription(Protocol):
    def unsubscribe(self) -> None:
        ...


class CategoryProvider(Protocol):
    """Source of the category names an operator may assign."""

    def list_categories(self) -> List[str]:
        ...

    def subscribe(self, listener: CategoryListener) -> Subscription:
        ...


class _ListenerHandle:
    def __init__(self, provider: "StaticCategoryProvider", listener: CategoryListener):
        self._provider = provider
        self._listener = listener

    def unsubscribe(self) -> None:
        self._provider._listeners.discard(self._listener)


class StaticCategoryProvider:
    """In-memory category list; ``set_categories`` notifies subscribers."""

    def __init__(self, categories: Sequence[str] = ()):
        self._categories = list(categories)
        self._listeners = set()

    def list_categories(self) -> List[str]:
        return list(self._categories)

    def subscribe(self, listener: CategoryListener) -> Subscription:
        self._listeners.add(listener)
        return _ListenerHandle(self, listener)

    def set_categories(self, categories: Sequence[str]) -> None:
        self._categories = list(categories)
        for listener in list(self._listeners):
            listener(self.list_categories())

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)


# =============================================================================
# Session
# =============================================================================

class ReconciliationSession:
    """Operator-facing wrapper around the reconciliation reducer.

    Example:
        session = ReconciliationSession.from_extraction(result, decisions)
        session.delete("extracted-2")
        session.decide(0, UserDecision.ACCEPT_MATCH)
        session.set_global_margin(Decimal("30"))
        confirmed = session.confirm()
    """

    def __init__(
        self,
        state: ReconciliationState,
        category_provider: Optional[CategoryProvider] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._state = state
        self._category_provider = category_provider
        self._categories: List[str] = []
        self._subscription: Optional[Subscription] = None

        if category_provider is not None:
            self._categories = list(category_provider.list_categories())
            self._subscription = category_provider.subscribe(self._on_categories_changed)

    @classmethod
    def from_extraction(
        cls,
        result: ExtractionResult,
        decisions: Sequence[MatchDecision] = (),
        msrp_options: Optional[MsrpImportOptions] = None,
        category_provider: Optional[CategoryProvider] = None,
        default_margin: Decimal = engine.DEFAULT_GLOBAL_MARGIN,
        session_id: Optional[str] = None,
    ) -> "ReconciliationSession":
        state = engine.build_initial_state(result, decisions, msrp_options, default_margin)
        return cls(state, category_provider=category_provider, session_id=session_id)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ReconciliationState:
        return self._state

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    def _on_categories_changed(self, categories: List[str]) -> None:
        self._categories = list(categories)
        logger.debug("Category list updated", extra_fields={"count": len(categories)})

    def close(self) -> None:
        """Release the category subscription."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "ReconciliationSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # Events
    # =========================================================================

    def dispatch(self, event) -> ReconciliationState:
        """Apply an event and make the result the current state."""
        if isinstance(event, EditField) and event.field == "category":
            self._check_category(event.value)

        with with_correlation(session_id=self.session_id, stage="preview"):
            self._state = engine.apply(self._state, event)
            logger.debug(
                f"Applied {type(event).__name__}",
                extra_fields={"event": type(event).__name__},
            )
        return self._state

    def _check_category(self, value) -> None:
        if value and self._categories and value not in self._categories:
            raise ValueError(f"Unknown category: {value}")

    def edit_field(self, candidate_id: str, field: str, value) -> ReconciliationState:
        return self.dispatch(EditField(candidate_id, field, value))

    def toggle_editing(self, candidate_id: str) -> ReconciliationState:
        return self.dispatch(ToggleEditing(candidate_id))

    def set_status(self, candidate_id: str, status: CandidateStatus) -> ReconciliationState:
        return self.dispatch(SetStatus(candidate_id, status))

    def delete(self, candidate_id: str) -> ReconciliationState:
        return self.dispatch(DeleteCandidate(candidate_id))

    def decide(self, component_index: int, decision: UserDecision) -> ReconciliationState:
        return self.dispatch(DecideMatch(component_index, decision))

    def select_match(self, component_index: int, match_id: str) -> ReconciliationState:
        return self.dispatch(SelectMatch(component_index, match_id))

    def bulk_apply(self, manufacturer: str = "", supplier: str = "") -> ReconciliationState:
        return self.dispatch(BulkEdit(manufacturer=manufacturer, supplier=supplier))

    def set_global_margin(self, margin_percent: Decimal) -> ReconciliationState:
        return self.dispatch(GlobalMarginChange(margin_percent))

    def set_item_margin(self, candidate_id: str, margin_percent: Decimal) -> ReconciliationState:
        return self.dispatch(ItemMarginChange(candidate_id, margin_percent))

    def reverse_part_number(self, candidate_id: str) -> ReconciliationState:
        return self.dispatch(ReversePartNumber(candidate_id))

    # =========================================================================
    # Gate
    # =========================================================================

    def get_pending_decisions(self) -> List[MatchDecision]:
        return engine.get_pending_decisions(self._state)

    def summary(self) -> Dict[str, int]:
        """Counts shown above the preview table."""
        candidates = self._state.candidates
        return {
            "total": len(candidates),
            "approved": sum(1 for c in candidates if c.status == CandidateStatus.APPROVED),
            "modified": sum(1 for c in candidates if c.status == CandidateStatus.MODIFIED),
            "rejected": len(self._state.rejected_ids),
            "with_matches": sum(1 for d in self._state.decisions if d.has_matches),
            "pending": len(self.get_pending_decisions()),
        }

    def confirm(self) -> ConfirmedImport:
        """Release the surviving candidates for finalize.

        Raises:
            ValidationFailure: One or more decisions are still pending
        """
        pending = self.get_pending_decisions()
        if pending:
            get_metrics().record_import_blocked()
            logger.warning(
                "Confirm blocked by pending match decisions",
                extra_fields={"pending": len(pending), "session_id": self.session_id},
            )
            raise ValidationFailure(len(pending))

        return ConfirmedImport(
            candidates=list(self._state.candidates),
            decisions=list(self._state.decisions),
            metadata=self._state.metadata,
        )
