"""Extraction runner for supplier quote documents.

Document parsing itself happens in an external extractor (LLM or
spreadsheet reader). This module turns the extractor's JSON payload into
an ExtractionResult and applies the RTL safeguards:

- parse_extraction_payload(raw_text) -> ExtractionResult
- add_rtl_warnings(components, is_rtl_document) -> (components, warnings)
- JsonFileExtractor().parse(path) -> ExtractionResult
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Protocol, Tuple

from pydantic import ValidationError

from core.errors import ExtractionFailure
from core.models.canonical import CandidateComponent
from core.observability.logging import get_logger
from core.observability.metrics import record_processing_time
from extraction.models import (
    ExtractionMetadata,
    ExtractionResult,
    ExtractionWarning,
    WarningSeverity,
    WarningType,
)
from extraction.part_numbers import detect_potential_rtl_issue


logger = get_logger(__name__)

DEFAULT_COMPONENT_CONFIDENCE = 0.5
RTL_CONFIDENCE_PENALTY = 0.1
RTL_MAX_PENALTY = 0.3
RTL_MIN_CONFIDENCE = 0.3


class Extractor(Protocol):
    """Protocol for document extractors."""

    def parse(self, path: Path) -> ExtractionResult:
        """Parse a supplier quote file into candidate components."""
        ...


# =============================================================================
# Payload Parsing
# =============================================================================

def parse_json_str(raw_text: str) -> dict:
    """Parse JSON from an LLM response, stripping code fences or extracting the JSON block."""
    text = raw_text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start >= 0 and end > start:
            return json.loads(text[start:end + 1])
        raise


def add_rtl_warnings(
    components: List[CandidateComponent],
    is_rtl_document: bool,
) -> Tuple[List[CandidateComponent], List[ExtractionWarning]]:
    """Flag part numbers that may have been reversed by RTL rendering.

    Components are returned as new objects; flagged ones carry
    ``potential_rtl_issue`` and ``rtl_issue_reason``. Part numbers are never
    changed here.
    """
    warnings: List[ExtractionWarning] = []
    if not is_rtl_document:
        return list(components), warnings

    warnings.append(ExtractionWarning(
        type=WarningType.RTL_DOCUMENT,
        message="RTL document detected. Review part numbers and use Reverse if they appear reversed.",
        severity=WarningSeverity.INFO,
    ))

    processed = []
    for index, component in enumerate(components):
        issue = detect_potential_rtl_issue(component.manufacturer_pn)
        if issue:
            warnings.append(ExtractionWarning(
                type=WarningType.POTENTIAL_REVERSAL,
                message=f'Component {index + 1} "{component.manufacturer_pn}": {issue}',
                component_index=index,
                severity=WarningSeverity.WARNING,
            ))
            component = component.model_copy(update={
                "potential_rtl_issue": True,
                "rtl_issue_reason": issue,
            })
        processed.append(component)

    return processed, warnings


def _missing_price_warnings(components: List[CandidateComponent]) -> List[ExtractionWarning]:
    warnings = []
    for index, component in enumerate(components):
        if component.prices.is_empty() and component.msrp is None:
            warnings.append(ExtractionWarning(
                type=WarningType.MISSING_DATA,
                message=f'Component {index + 1} "{component.name}": no unit price found',
                component_index=index,
                severity=WarningSeverity.WARNING,
            ))
    return warnings


def build_extraction_result(payload: Dict[str, Any]) -> ExtractionResult:
    """Validate an extractor payload and apply RTL safeguards.

    Rows that fail validation are dropped with an error-severity warning.
    Overall confidence is the mean component confidence, reduced by 0.1 per
    potential reversal (at most 0.3, never below 0.3) for RTL documents.
    """
    raw_components = payload.get("components")
    if not isinstance(raw_components, list):
        raise ValueError("Invalid extraction payload: missing components array")

    raw_metadata = dict(payload.get("metadata") or {})
    if "documentType" not in raw_metadata and payload.get("documentType"):
        raw_metadata["documentType"] = payload["documentType"]
    metadata = ExtractionMetadata.model_validate(raw_metadata)

    components: List[CandidateComponent] = []
    warnings: List[ExtractionWarning] = []
    for row_number, raw in enumerate(raw_components, start=1):
        try:
            components.append(CandidateComponent.model_validate(raw))
        except ValidationError as e:
            logger.warning(
                f"Dropping extracted row {row_number}: validation failed",
                extra_fields={"errors": e.error_count()},
            )
            warnings.append(ExtractionWarning(
                type=WarningType.MISSING_DATA,
                message=f"Row {row_number} could not be read: {e.errors()[0]['msg']}",
                severity=WarningSeverity.ERROR,
            ))

    if components:
        avg_confidence = sum(
            c.confidence or DEFAULT_COMPONENT_CONFIDENCE for c in components
        ) / len(components)
    else:
        avg_confidence = DEFAULT_COMPONENT_CONFIDENCE

    components, rtl_warnings = add_rtl_warnings(components, metadata.is_rtl_document)
    warnings = rtl_warnings + warnings + _missing_price_warnings(components)

    confidence = avg_confidence
    reversal_count = sum(1 for w in rtl_warnings if w.type == WarningType.POTENTIAL_REVERSAL)
    if metadata.is_rtl_document and reversal_count:
        reduction = min(RTL_MAX_PENALTY, reversal_count * RTL_CONFIDENCE_PENALTY)
        confidence = max(RTL_MIN_CONFIDENCE, avg_confidence - reduction)
        logger.info(
            f"Confidence adjusted from {avg_confidence:.2f} to {confidence:.2f} "
            f"due to {reversal_count} potential RTL issue(s)"
        )

    metadata.total_items = len(components)

    return ExtractionResult(
        success=True,
        components=components,
        metadata=metadata,
        confidence=confidence,
        warnings=warnings,
    )


def parse_extraction_payload(raw_text: str) -> ExtractionResult:
    """Parse an extractor's raw JSON text.

    Malformed payloads produce ``success=False`` with an error message
    rather than raising.
    """
    try:
        payload = parse_json_str(raw_text)
        return build_extraction_result(payload)
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        logger.error(
            "Failed to parse extraction payload",
            extra_fields={"error": str(e), "head": raw_text[:500]},
        )
        return ExtractionResult(
            success=False,
            confidence=0.0,
            error=f"Failed to parse extraction response: {e}",
        )


# =============================================================================
# Extractors
# =============================================================================

class JsonFileExtractor:
    """Reads a previously extracted payload stored as a JSON file.

    Example:
        result = JsonFileExtractor().parse(Path("artifacts/quote_123.json"))
    """

    def parse(self, path: Path) -> ExtractionResult:
        start = time.time()
        path = Path(path)
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ExtractionFailure(
                f"Could not read extraction file: {path.name}",
                source=str(path),
                details=str(e),
            )

        result = parse_extraction_payload(raw_text)
        duration_ms = (time.time() - start) * 1000
        record_processing_time("extracting", duration_ms)

        logger.info(
            f"Extracted {len(result.components)} component(s) from {path.name}",
            extra_fields={
                "success": result.success,
                "confidence": round(result.confidence, 3),
                "warnings": len(result.warnings),
                "duration_ms": round(duration_ms, 1),
            },
        )
        return result
