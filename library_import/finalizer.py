"""Finalize a confirmed reconciliation into the component library.

Each surviving candidate becomes either:
- a new LibraryComponent with an initial current price history row, or
- a new current price on an existing component the operator accepted as a match

Candidates are persisted one at a time. A failure is itemized in the
ImportResult and the loop continues; earlier writes are not rolled back.
"""

import time
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Protocol, Sequence

from component_matcher.models import MatchDecision, UserDecision
from core.errors import PersistenceFailure, ValidationFailure
from core.models.canonical import (
    LibraryComponent,
    Money,
    NormalizedPriceSet,
    PriceHistoryEntry,
    QuoteRecord,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from extraction.models import ExtractionMetadata
from library_import.models import ImportFailure, ImportResult
from pricing.normalizer import PriceNormalizer
from reconciliation.models import CandidateStatus, ConfirmedImport, PreviewCandidate


logger = get_logger(__name__)

DEFAULT_CATEGORY = "other"

ProgressCallback = Callable[[int, int], None]


class ComponentRepository(Protocol):
    """Writes and reads the finalizer needs from the library store."""

    def create_component(self, component: LibraryComponent) -> LibraryComponent:
        ...

    def update_component_prices(self, component_id: str, prices: NormalizedPriceSet,
                                msrp: Optional[Money] = None,
                                partner_discount_percent: Optional[Decimal] = None) -> bool:
        ...

    def append_price_history(self, component_id: str, quote_id: Optional[str],
                             entry: PriceHistoryEntry) -> PriceHistoryEntry:
        ...

    def record_current_price(self, component_id: str, quote_id: Optional[str],
                             entry: PriceHistoryEntry) -> PriceHistoryEntry:
        """Clear the current row and append ``entry`` as current, atomically."""
        ...

    def create_quote_record(self, record: QuoteRecord) -> str:
        ...

    def list_components(self) -> List[LibraryComponent]:
        ...


class Finalizer:
    """Turns confirmed candidates into repository writes.

    Example:
        finalizer = Finalizer(SQLiteComponentRepository(db_path), normalizer)
        result = finalizer.finalize_confirmed(session.confirm(), quote=quote_record)
        print(result.new_count, result.updated_count, len(result.failures))
    """

    def __init__(
        self,
        repository: ComponentRepository,
        normalizer: PriceNormalizer,
        default_category: str = DEFAULT_CATEGORY,
    ):
        self.repository = repository
        self.normalizer = normalizer
        self.default_category = default_category

    def finalize_confirmed(
        self,
        confirmed: ConfirmedImport,
        quote: Optional[QuoteRecord] = None,
        quote_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        return self.finalize(
            confirmed.candidates,
            confirmed.decisions,
            confirmed.metadata,
            quote=quote,
            quote_id=quote_id,
            on_progress=on_progress,
        )

    def finalize(
        self,
        candidates: Sequence[PreviewCandidate],
        decisions: Sequence[MatchDecision],
        metadata: Optional[ExtractionMetadata] = None,
        quote: Optional[QuoteRecord] = None,
        quote_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """Persist the candidates.

        Args:
            candidates: Candidates to persist; rejected ones are skipped
            decisions: Active match decisions
            metadata: Document metadata; supplies supplier and quote date defaults
            quote: Quote record to create when ``quote_id`` is not given
            quote_id: Existing quote record id
            on_progress: Called with (done, total) after each candidate

        Returns:
            ImportResult with counts and itemized failures

        Raises:
            ValidationFailure: A decision with matches is still pending; no
                repository method has been called
        """
        rejected = {c.original_index for c in candidates if c.status == CandidateStatus.REJECTED}
        if rejected:
            logger.debug(f"Skipping {len(rejected)} rejected candidate(s)")
            candidates = [c for c in candidates if c.original_index not in rejected]
            decisions = [d for d in decisions if d.component_index not in rejected]

        pending = [d for d in decisions if d.is_pending]
        if pending:
            get_metrics().record_import_blocked()
            logger.warning(
                "Finalize blocked by pending match decisions",
                extra_fields={"pending": len(pending)},
            )
            raise ValidationFailure(len(pending))

        metadata = metadata or ExtractionMetadata()
        start = time.time()

        if quote_id is None and quote is not None:
            quote_id = self.repository.create_quote_record(quote)
            logger.info(f"Created quote record {quote_id}")

        result = ImportResult(quote_id=quote_id)
        by_index = {d.component_index: d for d in decisions}
        total = len(candidates)

        with with_correlation(quote_id=quote_id, stage="importing"):
            for done, candidate in enumerate(candidates, start=1):
                decision = by_index.get(candidate.original_index)
                with with_correlation(component_index=candidate.original_index):
                    try:
                        if self.persist_candidate(candidate, decision, metadata, quote_id):
                            result.updated_count += 1
                        else:
                            result.new_count += 1
                    except PersistenceFailure as e:
                        result.failures.append(ImportFailure(item_name=e.item_name, reason=e.reason))

                if on_progress:
                    on_progress(done, total)

        duration_ms = (time.time() - start) * 1000
        get_metrics().record_import_completed(
            created=result.new_count,
            updated=result.updated_count,
            failed=result.failed_count,
            duration_ms=duration_ms,
        )
        logger.info(
            f"Imported {result.imported_count}/{total} component(s)",
            extra_fields={
                "new": result.new_count,
                "updated": result.updated_count,
                "failed": result.failed_count,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return result

    # =========================================================================
    # Per-candidate writes
    # =========================================================================

    def persist_candidate(
        self,
        candidate: PreviewCandidate,
        decision: Optional[MatchDecision],
        metadata: ExtractionMetadata,
        quote_id: Optional[str] = None,
    ) -> bool:
        """Write one candidate to the library.

        Returns:
            True when an existing component was updated, False when a new
            component was created

        Raises:
            PersistenceFailure: A repository write failed
        """
        try:
            if _accepts_match(decision):
                self._merge_into_match(candidate, decision, metadata, quote_id)
                return True
            self._create_component(candidate, metadata, quote_id)
            return False
        except Exception as e:
            logger.exception(
                f"Failed to import '{candidate.name}'",
                extra_fields={"error_type": type(e).__name__},
            )
            raise PersistenceFailure(candidate.name, str(e)) from e

    def _merge_into_match(
        self,
        candidate: PreviewCandidate,
        decision: MatchDecision,
        metadata: ExtractionMetadata,
        quote_id: Optional[str],
    ) -> None:
        target = decision.resolve_target()
        component_id = target.component.id
        prices = self.normalizer.normalize(candidate.prices, candidate.currency)

        self.repository.record_current_price(
            component_id,
            quote_id,
            self._history_entry(component_id, candidate, prices, metadata, target.confidence),
        )
        self.repository.update_component_prices(
            component_id,
            prices,
            msrp=candidate.msrp,
            partner_discount_percent=candidate.partner_discount_percent,
        )
        logger.debug(f"Updated prices of {component_id} from '{candidate.name}'")

    def _create_component(
        self,
        candidate: PreviewCandidate,
        metadata: ExtractionMetadata,
        quote_id: Optional[str],
    ) -> None:
        prices = self.normalizer.normalize(candidate.prices, candidate.currency)
        stored = self.repository.create_component(LibraryComponent(
            name=candidate.name,
            description=candidate.description,
            manufacturer=candidate.manufacturer,
            manufacturer_pn=candidate.manufacturer_pn,
            category=candidate.category or self.default_category,
            component_type=candidate.component_type,
            labor_subtype=candidate.labor_subtype,
            supplier=candidate.supplier or metadata.supplier,
            notes=candidate.notes,
            unit_cost_nis=prices.unit_cost_nis,
            unit_cost_usd=prices.unit_cost_usd,
            unit_cost_eur=prices.unit_cost_eur,
            currency=prices.currency,
            original_cost=prices.original_cost,
            msrp_price=candidate.msrp.amount if candidate.msrp else None,
            msrp_currency=candidate.msrp.currency if candidate.msrp else None,
            partner_discount_percent=candidate.partner_discount_percent,
            quote_date=_quote_date(candidate, metadata),
        ))
        self.repository.append_price_history(
            stored.id,
            quote_id,
            self._history_entry(stored.id, candidate, prices, metadata, candidate.confidence),
        )
        logger.debug(f"Created component {stored.id} for '{candidate.name}'")

    def _history_entry(
        self,
        component_id: str,
        candidate: PreviewCandidate,
        prices: NormalizedPriceSet,
        metadata: ExtractionMetadata,
        confidence: float,
    ) -> PriceHistoryEntry:
        return PriceHistoryEntry(
            component_id=component_id,
            unit_price_nis=prices.unit_cost_nis,
            unit_price_usd=prices.unit_cost_usd,
            unit_price_eur=prices.unit_cost_eur,
            currency=prices.currency,
            quote_date=_quote_date(candidate, metadata),
            supplier_name=candidate.supplier or metadata.supplier,
            confidence_score=confidence,
            is_current_price=True,
        )


def _accepts_match(decision: Optional[MatchDecision]) -> bool:
    return (
        decision is not None
        and decision.user_decision == UserDecision.ACCEPT_MATCH
        and decision.has_matches
    )


def _quote_date(candidate: PreviewCandidate, metadata: ExtractionMetadata) -> date:
    return candidate.quote_date or metadata.quote_date or date.today()
