"""Extraction result models.

An extractor turns a supplier quote into an ExtractionResult: candidate
components, document metadata, an overall confidence and review warnings.
"""

from enum import Enum
from typing import List, Optional

from pydantic import Field

from core.models.canonical import CanonicalBase, CandidateComponent, CurrencyValue, DateValue


class WarningType(str, Enum):
    """Kind of review warning raised during extraction."""
    RTL_DOCUMENT = "rtl_document"
    POTENTIAL_REVERSAL = "potential_reversal"
    LOW_CONFIDENCE = "low_confidence"
    MISSING_DATA = "missing_data"


class WarningSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ExtractionWarning(CanonicalBase):
    """A warning for operator review.

    ``component_index`` is None when the warning applies to the whole document.
    """
    type: WarningType
    message: str
    component_index: Optional[int] = Field(default=None, alias="componentIndex")
    severity: WarningSeverity = Field(default=WarningSeverity.WARNING)


class ExtractionMetadata(CanonicalBase):
    """Document-level metadata reported by the extractor."""
    document_type: str = Field(default="unknown", alias="documentType")
    supplier: Optional[str] = None
    quote_date: Optional[DateValue] = Field(default=None, alias="quoteDate")
    currency: Optional[CurrencyValue] = None
    total_items: int = Field(default=0, alias="totalItems")
    is_rtl_document: bool = Field(default=False, alias="isRTLDocument")
    extraction_method: Optional[str] = Field(default=None, alias="extractionMethod")


class ExtractionResult(CanonicalBase):
    """Output of Extractor.parse."""
    success: bool = True
    components: List[CandidateComponent] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    warnings: List[ExtractionWarning] = Field(default_factory=list)
    error: Optional[str] = None
