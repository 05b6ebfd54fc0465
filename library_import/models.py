"""Import pipeline data structures."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ImportStep(str, Enum):
    """Step of the import pipeline."""
    UPLOAD = "upload"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    PREVIEW = "preview"
    IMPORTING = "importing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass
class ImportFailure:
    """One candidate that could not be persisted.

    Attributes:
        item_name: Candidate name
        reason: Error message
    """
    item_name: str
    reason: str


@dataclass
class ImportResult:
    """Outcome of finalize.

    Attributes:
        new_count: Components created
        updated_count: Existing components that received a new current price
        failures: Itemized per-candidate failures
        quote_id: Supplier quote record the prices were taken from
    """
    new_count: int = 0
    updated_count: int = 0
    failures: List[ImportFailure] = field(default_factory=list)
    quote_id: Optional[str] = None

    @property
    def imported_count(self) -> int:
        return self.new_count + self.updated_count

    @property
    def success_count(self) -> int:
        return self.imported_count

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "imported_count": self.imported_count,
            "new_count": self.new_count,
            "updated_count": self.updated_count,
            "success_count": self.success_count,
            "failures": [{"item_name": f.item_name, "reason": f.reason} for f in self.failures],
            "quote_id": self.quote_id,
        }


@dataclass
class ImportProgress:
    """Progress reported while matching or importing."""
    step: ImportStep
    current: int = 0
    total: int = 0
    message: str = ""
