"""Reconciliation - operator review of extracted candidates.

Usage:
    from reconciliation import ReconciliationSession

    session = ReconciliationSession.from_extraction(result, decisions)
    session.decide(0, UserDecision.CREATE_NEW)
    confirmed = session.confirm()
"""

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
    PreviewCandidate,
    PricingMode,
    ReconciliationState,
    ReversePartNumber,
    SelectMatch,
    SetStatus,
    ToggleEditing,
)
from reconciliation.engine import (
    DEFAULT_GLOBAL_MARGIN,
    EDITABLE_FIELDS,
    apply,
    build_initial_state,
    get_pending_decisions,
)
from reconciliation.session import (
    CategoryProvider,
    ReconciliationSession,
    StaticCategoryProvider,
)

__all__ = [
    # Models
    "CandidateStatus",
    "ConfirmedImport",
    "MsrpImportOptions",
    "PreviewCandidate",
    "PricingMode",
    "ReconciliationState",
    # Events
    "BulkEdit",
    "DecideMatch",
    "DeleteCandidate",
    "EditField",
    "GlobalMarginChange",
    "ItemMarginChange",
    "ReversePartNumber",
    "SelectMatch",
    "SetStatus",
    "ToggleEditing",
    # Engine
    "DEFAULT_GLOBAL_MARGIN",
    "EDITABLE_FIELDS",
    "apply",
    "build_initial_state",
    "get_pending_decisions",
    # Session
    "CategoryProvider",
    "ReconciliationSession",
    "StaticCategoryProvider",
]
