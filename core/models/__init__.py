"""Core data models - canonical component library types.

This package contains the shared models used by extraction, matching,
reconciliation and persistence.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    DecimalValue,
    DateValue,
    CurrencyValue,

    # Enumerations
    Currency,
    ComponentType,
    LaborSubtype,
    QuoteStatus,

    # Money
    Money,
    PriceTriple,
    NormalizedPriceSet,

    # Components
    CandidateComponent,
    LibraryComponent,
    PriceHistoryEntry,
    QuoteRecord,
)
from core.models.refs import DataReference, SourceFileRef

__all__ = [
    "CanonicalBase",
    "DecimalValue",
    "DateValue",
    "CurrencyValue",
    "Currency",
    "ComponentType",
    "LaborSubtype",
    "QuoteStatus",
    "Money",
    "PriceTriple",
    "NormalizedPriceSet",
    "CandidateComponent",
    "LibraryComponent",
    "PriceHistoryEntry",
    "QuoteRecord",
    "DataReference",
    "SourceFileRef",
]
