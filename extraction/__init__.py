"""Extraction - extractor contract, payload parsing and part number safeguards."""

from extraction.models import (
    ExtractionMetadata,
    ExtractionResult,
    ExtractionWarning,
    WarningSeverity,
    WarningType,
)
from extraction.part_numbers import reverse_part_number, detect_potential_rtl_issue
from extraction.runner import (
    Extractor,
    JsonFileExtractor,
    add_rtl_warnings,
    build_extraction_result,
    parse_extraction_payload,
)

__all__ = [
    "ExtractionMetadata",
    "ExtractionResult",
    "ExtractionWarning",
    "WarningSeverity",
    "WarningType",
    "reverse_part_number",
    "detect_potential_rtl_issue",
    "Extractor",
    "JsonFileExtractor",
    "add_rtl_warnings",
    "build_extraction_result",
    "parse_extraction_payload",
]
