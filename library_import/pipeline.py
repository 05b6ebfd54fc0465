"""Supplier quote import pipeline.

Steps:
    upload -> extracting -> matching -> preview -> importing -> complete

The pipeline can be cancelled only in the upload and extracting steps. Once
matching has started it runs to the preview, and the operator either
finalizes or drops the session.
"""

import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from component_matcher.matcher import ComponentMatcher
from core.config import AppConfig, load_config
from core.errors import ExtractionFailure, InvalidStepError
from core.models.canonical import QuoteRecord, QuoteStatus
from core.models.refs import DataReference, SourceFileRef
from core.observability.logging import (
    get_logger,
    log_stage_complete,
    log_stage_error,
    log_stage_start,
    with_correlation,
)
from core.storage.artifacts import ArtifactStore
from extraction.models import ExtractionResult
from extraction.runner import Extractor
from library_import.finalizer import ComponentRepository, Finalizer
from library_import.models import ImportProgress, ImportResult, ImportStep
from pricing.normalizer import PriceNormalizer
from pricing.rates import StaticRateSource
from reconciliation.models import MsrpImportOptions
from reconciliation.session import CategoryProvider, ReconciliationSession


logger = get_logger(__name__)

ProgressListener = Callable[[ImportProgress], None]

_CANCELLABLE_STEPS = (ImportStep.UPLOAD, ImportStep.EXTRACTING)


class ImportPipeline:
    """Runs one supplier quote from upload to library import.

    Example:
        pipeline = ImportPipeline(JsonFileExtractor(), matcher, repo)
        pipeline.extract(Path("quote.json"))
        session = await pipeline.match()
        session.decide(0, UserDecision.CREATE_NEW)
        result = pipeline.finalize()
    """

    def __init__(
        self,
        extractor: Extractor,
        matcher: ComponentMatcher,
        repository: ComponentRepository,
        normalizer: Optional[PriceNormalizer] = None,
        artifact_store: Optional[ArtifactStore] = None,
        category_provider: Optional[CategoryProvider] = None,
        config: Optional[AppConfig] = None,
        on_progress: Optional[ProgressListener] = None,
    ):
        self.config = config or load_config()
        self.extractor = extractor
        self.matcher = matcher
        self.repository = repository
        self.normalizer = normalizer or PriceNormalizer(
            StaticRateSource.from_config(self.config).get_rates()
        )
        self.artifact_store = artifact_store
        self.category_provider = category_provider
        self.on_progress = on_progress

        self.pipeline_id = uuid.uuid4().hex[:12]
        self.step = ImportStep.UPLOAD
        self.progress = ImportProgress(step=ImportStep.UPLOAD)
        self.source: Optional[SourceFileRef] = None
        self.extraction_ref: Optional[DataReference] = None
        self.extraction: Optional[ExtractionResult] = None
        self.session: Optional[ReconciliationSession] = None
        self.result: Optional[ImportResult] = None

    # =========================================================================
    # Step bookkeeping
    # =========================================================================

    def _set_step(self, step: ImportStep, current: int = 0, total: int = 0, message: str = "") -> None:
        self.step = step
        self._report(ImportProgress(step=step, current=current, total=total, message=message))

    def _report(self, progress: ImportProgress) -> None:
        self.progress = progress
        if self.on_progress:
            self.on_progress(progress)

    def _require(self, *steps: ImportStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidStepError(
                f"Operation not allowed in step '{self.step.value}' (expected {allowed})",
                step=self.step.value,
            )

    def cancel(self) -> None:
        """Abandon the import before matching starts.

        Raises:
            InvalidStepError: Matching or importing has already started
        """
        self._require(*_CANCELLABLE_STEPS)
        logger.info("Import cancelled", extra_fields={"pipeline_id": self.pipeline_id})
        self.extraction = None
        self._set_step(ImportStep.CANCELLED, message="Cancelled")

    # =========================================================================
    # Steps
    # =========================================================================

    def extract(self, path: Path) -> ExtractionResult:
        """Store the source file and run the extractor.

        Raises:
            ExtractionFailure: The file could not be read or the extractor
                reported failure; the pipeline returns to the upload step so the
                operator can retry
        """
        self._require(ImportStep.UPLOAD)
        path = Path(path)

        with with_correlation(session_id=self.pipeline_id, file_name=path.name, stage="extracting"):
            self._set_step(ImportStep.EXTRACTING, message=f"Extracting {path.name}")
            log_stage_start("extracting", file_name=path.name)
            start = time.time()

            try:
                if self.artifact_store is not None:
                    self.source = self.artifact_store.store_source_file(path.name, path.read_bytes())
                else:
                    self.source = SourceFileRef(file_name=path.name, file_url=path.resolve().as_uri())

                result = self.extractor.parse(path)
                if not result.success:
                    raise ExtractionFailure(result.error or "Extraction failed", source=path.name)
            except (ExtractionFailure, OSError) as e:
                log_stage_error("extracting", str(e), error_type=type(e).__name__)
                self.source = None
                self._set_step(ImportStep.UPLOAD, message="Extraction failed")
                if isinstance(e, ExtractionFailure):
                    raise
                raise ExtractionFailure(f"Could not read {path.name}", source=path.name, details=str(e)) from e

            if self.artifact_store is not None:
                self.extraction_ref = self.artifact_store.put_json(
                    result, f"extractions/{self.pipeline_id}.json"
                )

            duration_ms = (time.time() - start) * 1000
            log_stage_complete("extracting", duration_ms, components=len(result.components))

        self.extraction = result
        return result

    async def match(self, msrp_options: Optional[MsrpImportOptions] = None) -> ReconciliationSession:
        """Match extracted candidates against the library and open the preview."""
        self._require(ImportStep.EXTRACTING)
        if self.extraction is None:
            raise InvalidStepError("No extraction result to match", step=self.step.value)

        candidates = self.extraction.components
        total = len(candidates)

        with with_correlation(session_id=self.pipeline_id, stage="matching"):
            self._set_step(ImportStep.MATCHING, total=total, message="Matching against library")
            log_stage_start("matching", candidates=total)
            start = time.time()

            library = self.repository.list_components()
            decisions = await self.matcher.batch_match(
                candidates,
                library,
                on_progress=lambda done, count: self._report(
                    ImportProgress(step=ImportStep.MATCHING, current=done, total=count)
                ),
            )

            duration_ms = (time.time() - start) * 1000
            log_stage_complete("matching", duration_ms, library_size=len(library))

        self.session = ReconciliationSession.from_extraction(
            self.extraction,
            decisions,
            msrp_options=msrp_options,
            category_provider=self.category_provider,
            default_margin=self.config.default_margin_percent,
            session_id=self.pipeline_id,
        )
        self._set_step(ImportStep.PREVIEW, current=total, total=total, message="Ready for review")
        return self.session

    def finalize(self) -> ImportResult:
        """Confirm the session and write the library.

        Raises:
            ValidationFailure: Pending decisions remain; the pipeline stays in preview
        """
        self._require(ImportStep.PREVIEW)
        confirmed = self.session.confirm()
        total = len(confirmed.candidates)

        self._set_step(ImportStep.IMPORTING, total=total, message="Importing components")
        finalizer = Finalizer(self.repository, self.normalizer, self.config.default_category)
        self.result = finalizer.finalize_confirmed(
            confirmed,
            quote=self._quote_record(),
            on_progress=lambda done, count: self._report(
                ImportProgress(step=ImportStep.IMPORTING, current=done, total=count)
            ),
        )
        self.session.close()
        self._set_step(ImportStep.COMPLETE, current=total, total=total, message="Import complete")
        return self.result

    def _quote_record(self) -> QuoteRecord:
        metadata = self.extraction.metadata
        file_name = self.source.file_name if self.source else "unknown"
        return QuoteRecord(
            file_name=file_name,
            file_url=self.source.file_url if self.source else f"placeholder://file-not-stored/{file_name}",
            file_type=Path(file_name).suffix.lstrip(".").lower() or None,
            document_type=metadata.document_type,
            extraction_method=metadata.extraction_method,
            confidence_score=self.extraction.confidence,
            total_components=len(self.extraction.components),
            supplier_name=metadata.supplier,
            quote_date=metadata.quote_date,
            status=QuoteStatus.COMPLETED,
            metadata={"warnings": [w.message for w in self.extraction.warnings]},
        )
