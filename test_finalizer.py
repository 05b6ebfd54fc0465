"""
Library import tests.

Covers the finalizer (validation gate, create and merge paths, per-item
failures) and the step-driven import pipeline end to end against SQLite.
"""

import pytest
import asyncio
import json
import os
import sqlite3
import tempfile
from datetime import date
from decimal import Decimal

import component_library.db as library_db
from component_library import SQLiteComponentRepository
from component_matcher import ComponentMatcher
from component_matcher.models import MatchCandidate, MatchDecision, MatchType, UserDecision
from core.config import AppConfig
from core.errors import ExtractionFailure, InvalidStepError, PersistenceFailure, ValidationFailure
from core.models.canonical import (
    CandidateComponent,
    Currency,
    LibraryComponent,
    Money,
    PriceHistoryEntry,
    PriceTriple,
    QuoteRecord,
)
from core.observability.metrics import get_metrics
from core.storage.artifacts import ArtifactStore
from extraction import JsonFileExtractor
from extraction.models import ExtractionMetadata, ExtractionResult
from library_import import Finalizer, ImportPipeline, ImportStep
from pricing import ExchangeRates, PriceNormalizer
from reconciliation import ReconciliationSession
from reconciliation.models import CandidateStatus


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    try:
        os.unlink(db_path)
    except PermissionError:
        pass


@pytest.fixture
def repo(temp_db):
    repository = SQLiteComponentRepository(temp_db)
    repository.init_db()
    return repository


@pytest.fixture
def normalizer():
    return PriceNormalizer(ExchangeRates(usd_to_ils=Decimal("3.7"), eur_to_ils=Decimal("4.0")))


@pytest.fixture
def config(temp_db, tmp_path):
    return AppConfig(db_path=temp_db, artifacts_dir=tmp_path / "artifacts")


class RecordingRepository:
    """Records every call; used to prove the gate writes nothing."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append(name)
        return record


class FailingRepository:
    """SQLite repository that refuses to create one named component."""

    def __init__(self, inner, fail_name):
        self.inner = inner
        self.fail_name = fail_name

    def create_component(self, component):
        if component.name == self.fail_name:
            raise RuntimeError("disk full")
        return self.inner.create_component(component)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class MergeFailingRepository:
    """SQLite repository whose price history write for a merge always fails."""

    def __init__(self, inner):
        self.inner = inner

    def record_current_price(self, component_id, quote_id, entry):
        raise RuntimeError("history write failed")

    def __getattr__(self, name):
        return getattr(self.inner, name)


def _session(components, decisions=(), metadata=None):
    result = ExtractionResult(
        components=components,
        metadata=metadata or ExtractionMetadata(supplier="Acme Automation", quote_date=date(2025, 3, 1)),
        confidence=0.8,
    )
    return ReconciliationSession.from_extraction(result, decisions)


def _existing(repo):
    return repo.create_component(LibraryComponent(
        name="S7-1200 CPU", manufacturer="Siemens", manufacturer_pn="6ES7214-1AG40", category="plc",
        unit_cost_nis=Decimal("1850.00"), unit_cost_usd=Decimal("500"), unit_cost_eur=Decimal("462.50"),
        currency=Currency.USD, original_cost=Decimal("500"),
    ))


def _accept(repo, normalizer, existing, usd_price):
    decisions = [
        MatchDecision(component_index=0, match_type=MatchType.EXACT,
                      matches=[MatchCandidate(component=existing, confidence=1.0)]),
    ]
    session = _session([CandidateComponent(name="CPU", prices=PriceTriple(usd=Decimal(usd_price)),
                                           currency=Currency.USD)], decisions)
    session.decide(0, UserDecision.ACCEPT_MATCH)
    return Finalizer(repo, normalizer).finalize_confirmed(session.confirm())


def _write_quote(tmp_path, components, **metadata):
    path = tmp_path / "quote.json"
    path.write_text(json.dumps({"components": components, "metadata": metadata}), encoding="utf-8")
    return path


QUOTE_ROWS = [
    {"name": "S7-1200 CPU", "manufacturer": "Siemens", "manufacturerPN": "6ES7214-1AG40",
     "unitPriceUSD": 450, "currency": "USD", "confidence": 0.9},
    {"name": "Shielded cable", "manufacturer": "Lapp", "unitPriceNIS": "37", "confidence": 0.8},
]


class TestValidationGate:
    """Pending decisions block finalize before any write."""

    def test_pending_blocks_without_repository_calls(self, normalizer):
        repository = RecordingRepository()
        decisions = [
            MatchDecision(component_index=0, match_type=MatchType.EXACT,
                          matches=[MatchCandidate(component=LibraryComponent(id="lib-1", name="PLC"), confidence=1.0)]),
        ]
        session = _session([CandidateComponent(name="PLC")], decisions)
        blocked_before = get_metrics().get_summary()["imports"]["blocked"]

        with pytest.raises(ValidationFailure) as exc_info:
            Finalizer(repository, normalizer).finalize(
                session.state.candidates, session.state.decisions,
                quote=QuoteRecord(file_name="q.pdf", file_url="placeholder://file-not-stored/q.pdf"),
            )

        assert exc_info.value.pending_count == 1
        assert repository.calls == []
        assert get_metrics().get_summary()["imports"]["blocked"] == blocked_before + 1

    def test_decisions_without_matches_do_not_block(self, repo, normalizer):
        decisions = [MatchDecision(component_index=0, match_type=MatchType.NONE)]
        session = _session([CandidateComponent(name="Relay", prices=PriceTriple(nis=Decimal("10")))], decisions)
        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm())
        assert result.new_count == 1


class TestCreatePath:
    """create_new and unmatched candidates become new components."""

    def test_new_component_with_defaults(self, repo, normalizer):
        session = _session([
            CandidateComponent(name="Shielded cable", manufacturer="Lapp",
                               prices=PriceTriple(usd=Decimal("75")), currency=Currency.USD, confidence=0.85),
        ])
        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm())

        assert result.new_count == 1
        assert result.updated_count == 0
        assert result.failures == []

        stored = repo.list_components()[0]
        assert stored.category == "other"
        assert stored.supplier == "Acme Automation"
        assert stored.quote_date == date(2025, 3, 1)
        assert stored.unit_cost_usd == Decimal("75")
        assert stored.unit_cost_nis == Decimal("277.50")
        assert stored.unit_cost_eur == Decimal("69.38")

        history = repo.get_price_history(stored.id)
        assert len(history) == 1
        assert history[0].is_current_price
        assert history[0].confidence_score == pytest.approx(0.85)

    def test_msrp_and_discount_stored(self, repo, normalizer):
        session = _session([
            CandidateComponent(name="Drive", prices=PriceTriple(usd=Decimal("90")), currency=Currency.USD,
                               msrp=Money(currency=Currency.USD, amount=Decimal("120")), category="drives"),
        ])
        Finalizer(repo, normalizer, default_category="misc").finalize_confirmed(session.confirm())

        stored = repo.list_components()[0]
        assert stored.category == "drives"
        assert stored.msrp_price == Decimal("120")
        assert stored.msrp_currency == Currency.USD
        assert stored.partner_discount_percent == Decimal("25.00")

    def test_create_new_ignores_matches(self, repo, normalizer):
        existing = _existing(repo)
        decisions = [
            MatchDecision(component_index=0, match_type=MatchType.EXACT,
                          matches=[MatchCandidate(component=existing, confidence=1.0)],
                          selected_match_id=existing.id),
        ]
        session = _session([CandidateComponent(name="S7-1200 CPU", prices=PriceTriple(usd=Decimal("450")))], decisions)
        session.decide(0, UserDecision.CREATE_NEW)

        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm())
        assert result.new_count == 1
        assert len(repo.list_components()) == 2
        assert repo.get_component(existing.id).unit_cost_usd == Decimal("500")


class TestAcceptMatchPath:
    """accept_match adds a current price to the selected component."""

    def test_updates_prices_and_history(self, repo, normalizer):
        existing = _existing(repo)
        decisions = [
            MatchDecision(component_index=0, match_type=MatchType.FUZZY,
                          matches=[MatchCandidate(component=existing, confidence=0.93)],
                          selected_match_id=existing.id),
        ]
        session = _session([
            CandidateComponent(name="CPU 1214C", prices=PriceTriple(usd=Decimal("450")),
                               currency=Currency.USD, confidence=0.6),
        ], decisions)
        session.decide(0, UserDecision.ACCEPT_MATCH)

        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm())

        assert result.updated_count == 1
        assert result.new_count == 0
        assert len(repo.list_components()) == 1

        updated = repo.get_component(existing.id)
        assert updated.name == "S7-1200 CPU"
        assert updated.unit_cost_usd == Decimal("450")
        assert updated.unit_cost_nis == Decimal("1665.00")

        current = repo.get_current_price(existing.id)
        assert current.unit_price_usd == Decimal("450")
        assert current.confidence_score == pytest.approx(0.93)
        assert current.supplier_name == "Acme Automation"

    def test_previous_current_price_cleared(self, repo, normalizer):
        existing = _existing(repo)
        for price in ("450", "430"):
            _accept(repo, normalizer, existing, price)

        history = repo.get_price_history(existing.id)
        assert [h.is_current_price for h in history] == [False, True]
        assert repo.get_current_price(existing.id).unit_price_usd == Decimal("430")

    def test_selected_match_used(self, repo, normalizer):
        first = _existing(repo)
        second = repo.create_component(LibraryComponent(name="S7-1200 CPU AC", manufacturer="Siemens"))
        decisions = [
            MatchDecision(component_index=0, match_type=MatchType.FUZZY,
                          matches=[MatchCandidate(component=first, confidence=0.95),
                                   MatchCandidate(component=second, confidence=0.91)],
                          selected_match_id=first.id),
        ]
        session = _session([CandidateComponent(name="CPU AC", prices=PriceTriple(nis=Decimal("2000")))], decisions)
        session.select_match(0, second.id)
        session.decide(0, UserDecision.ACCEPT_MATCH)

        Finalizer(repo, normalizer).finalize_confirmed(session.confirm())

        assert repo.get_current_price(second.id).unit_price_nis == Decimal("2000")
        assert repo.get_current_price(first.id) is None

    def test_failed_history_insert_keeps_current_price(self, repo, normalizer, monkeypatch):
        existing = _existing(repo)
        _accept(repo, normalizer, existing, "450")

        def broken_insert(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(library_db, "_insert_history", broken_insert)
        result = _accept(repo, normalizer, existing, "430")

        assert result.updated_count == 0
        assert result.failures[0].item_name == "CPU"
        assert "database is locked" in result.failures[0].reason

        history = repo.get_price_history(existing.id)
        assert [h.is_current_price for h in history] == [True]
        assert repo.get_current_price(existing.id).unit_price_usd == Decimal("450")
        assert repo.get_component(existing.id).unit_cost_usd == Decimal("450")


class TestPartialFailure:
    """A failing item is itemized; the rest are imported."""

    def test_one_failure_of_three(self, repo, normalizer):
        failing = FailingRepository(repo, fail_name="Broken relay")
        session = _session([
            CandidateComponent(name="Sensor", prices=PriceTriple(nis=Decimal("10"))),
            CandidateComponent(name="Broken relay", prices=PriceTriple(nis=Decimal("20"))),
            CandidateComponent(name="Cable", prices=PriceTriple(nis=Decimal("30"))),
        ])
        progress = []

        result = Finalizer(failing, normalizer).finalize_confirmed(
            session.confirm(), on_progress=lambda done, total: progress.append((done, total)),
        )

        assert result.success_count == 2
        assert result.failed_count == 1
        assert result.failures[0].item_name == "Broken relay"
        assert result.failures[0].reason == "disk full"
        assert [c.name for c in repo.list_components()] == ["Sensor", "Cable"]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_failed_accept_match_of_three(self, repo, normalizer):
        existing = _existing(repo)
        repo.append_price_history(existing.id, None, PriceHistoryEntry(
            component_id=existing.id, unit_price_usd=Decimal("500"), currency=Currency.USD,
            is_current_price=True,
        ))
        decisions = [
            MatchDecision(component_index=1, match_type=MatchType.EXACT,
                          matches=[MatchCandidate(component=existing, confidence=1.0)]),
        ]
        session = _session([
            CandidateComponent(name="Sensor", prices=PriceTriple(nis=Decimal("10"))),
            CandidateComponent(name="CPU", prices=PriceTriple(usd=Decimal("450")), currency=Currency.USD),
            CandidateComponent(name="Cable", prices=PriceTriple(nis=Decimal("30"))),
        ], decisions)
        session.decide(1, UserDecision.ACCEPT_MATCH)

        result = Finalizer(MergeFailingRepository(repo), normalizer).finalize_confirmed(session.confirm())

        assert result.success_count == 2
        assert result.new_count == 2
        assert result.updated_count == 0
        assert [(f.item_name, f.reason) for f in result.failures] == [("CPU", "history write failed")]
        assert [c.name for c in repo.list_components()] == ["S7-1200 CPU", "Sensor", "Cable"]
        assert repo.get_current_price(existing.id).unit_price_usd == Decimal("500")

    def test_persist_candidate_raises_persistence_failure(self, repo, normalizer):
        session = _session([CandidateComponent(name="Broken relay", prices=PriceTriple(nis=Decimal("20")))])
        candidate = session.state.candidates[0]
        finalizer = Finalizer(FailingRepository(repo, fail_name="Broken relay"), normalizer)

        with pytest.raises(PersistenceFailure) as exc_info:
            finalizer.persist_candidate(candidate, None, ExtractionMetadata())

        assert exc_info.value.item_name == "Broken relay"
        assert exc_info.value.reason == "disk full"
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestRejectedCandidates:
    """Direct finalize calls skip rejected candidates."""

    def test_rejected_candidate_and_its_decision_skipped(self, repo, normalizer):
        decisions = [
            MatchDecision(component_index=1, match_type=MatchType.EXACT,
                          matches=[MatchCandidate(component=LibraryComponent(id="lib-1", name="PLC"), confidence=1.0)]),
        ]
        session = _session([
            CandidateComponent(name="Sensor", prices=PriceTriple(nis=Decimal("10"))),
            CandidateComponent(name="PLC", prices=PriceTriple(nis=Decimal("900"))),
        ], decisions)
        candidates = [
            session.state.candidates[0],
            session.state.candidates[1].model_copy(update={"status": CandidateStatus.REJECTED}),
        ]

        result = Finalizer(repo, normalizer).finalize(candidates, session.state.decisions)

        assert result.new_count == 1
        assert result.failures == []
        assert [c.name for c in repo.list_components()] == ["Sensor"]

    def test_result_dict(self, repo, normalizer):
        session = _session([CandidateComponent(name="Sensor", prices=PriceTriple(nis=Decimal("10")))])
        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm())
        assert result.to_dict() == {
            "imported_count": 1,
            "new_count": 1,
            "updated_count": 0,
            "success_count": 1,
            "failures": [],
            "quote_id": None,
        }


class TestQuoteRecord:
    """The quote record is created once and linked to the history rows."""

    def test_quote_created_and_linked(self, repo, normalizer):
        session = _session([CandidateComponent(name="Sensor", prices=PriceTriple(nis=Decimal("10")))])
        quote = QuoteRecord(
            file_name="quote.pdf", file_url="placeholder://file-not-stored/quote.pdf",
            total_components=1, supplier_name="Acme Automation",
        )
        result = Finalizer(repo, normalizer).finalize_confirmed(session.confirm(), quote=quote)

        assert result.quote_id
        assert repo.get_quote_record(result.quote_id).file_name == "quote.pdf"
        stored = repo.list_components()[0]
        assert repo.get_price_history(stored.id)[0].quote_id == result.quote_id


class TestImportPipeline:
    """Step flow from upload to complete."""

    def test_full_flow(self, tmp_path, repo, config):
        path = _write_quote(tmp_path, QUOTE_ROWS, supplier="Acme Automation", quoteDate="2025-03-01")
        steps = []
        pipeline = ImportPipeline(
            JsonFileExtractor(), ComponentMatcher(), repo,
            artifact_store=ArtifactStore(tmp_path / "artifacts"),
            config=config,
            on_progress=lambda progress: steps.append(progress.step),
        )
        assert pipeline.step == ImportStep.UPLOAD

        extraction = pipeline.extract(path)
        assert len(extraction.components) == 2
        assert pipeline.step == ImportStep.EXTRACTING
        assert pipeline.source.file_name == "quote.json"
        stored = ArtifactStore(tmp_path / "artifacts").get_json(pipeline.extraction_ref)
        assert len(stored["components"]) == 2

        session = asyncio.run(pipeline.match())
        assert pipeline.step == ImportStep.PREVIEW
        assert session.get_pending_decisions() == []

        result = pipeline.finalize()
        assert pipeline.step == ImportStep.COMPLETE
        assert result.new_count == 2
        assert len(repo.list_components()) == 2

        quote = repo.get_quote_record(result.quote_id)
        assert quote.file_name == "quote.json"
        assert quote.file_type == "json"
        assert quote.total_components == 2
        assert quote.supplier_name == "Acme Automation"

        ordered = [s for i, s in enumerate(steps) if i == 0 or steps[i - 1] != s]
        assert ordered == [
            ImportStep.EXTRACTING,
            ImportStep.MATCHING,
            ImportStep.PREVIEW,
            ImportStep.IMPORTING,
            ImportStep.COMPLETE,
        ]

    def test_pending_match_keeps_preview(self, tmp_path, repo, config):
        existing = _existing(repo)
        path = _write_quote(tmp_path, QUOTE_ROWS, supplier="Acme Automation")
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)
        pipeline.extract(path)
        session = asyncio.run(pipeline.match())

        pending = session.get_pending_decisions()
        assert [d.component_index for d in pending] == [0]
        assert pending[0].match_type == MatchType.EXACT

        with pytest.raises(ValidationFailure):
            pipeline.finalize()
        assert pipeline.step == ImportStep.PREVIEW

        session.decide(0, UserDecision.ACCEPT_MATCH)
        result = pipeline.finalize()
        assert result.updated_count == 1
        assert result.new_count == 1
        assert repo.get_component(existing.id).unit_cost_usd == Decimal("450")

    def test_cancel_allowed_before_matching(self, tmp_path, repo, config):
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)
        pipeline.extract(_write_quote(tmp_path, QUOTE_ROWS))
        pipeline.cancel()
        assert pipeline.step == ImportStep.CANCELLED
        assert pipeline.extraction is None

    def test_cancel_rejected_after_matching(self, tmp_path, repo, config):
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)
        pipeline.extract(_write_quote(tmp_path, QUOTE_ROWS))
        asyncio.run(pipeline.match())
        with pytest.raises(InvalidStepError) as exc_info:
            pipeline.cancel()
        assert exc_info.value.step == "preview"

    def test_steps_enforced(self, tmp_path, repo, config):
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)
        with pytest.raises(InvalidStepError):
            pipeline.finalize()
        with pytest.raises(InvalidStepError):
            asyncio.run(pipeline.match())

    def test_extraction_failure_returns_to_upload(self, tmp_path, repo, config):
        path = tmp_path / "quote.json"
        path.write_text("not json", encoding="utf-8")
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)

        with pytest.raises(ExtractionFailure):
            pipeline.extract(path)
        assert pipeline.step == ImportStep.UPLOAD
        assert pipeline.extraction is None

    def test_missing_file_allows_retry(self, tmp_path, repo, config):
        pipeline = ImportPipeline(JsonFileExtractor(), ComponentMatcher(), repo, config=config)

        with pytest.raises(ExtractionFailure):
            pipeline.extract(tmp_path / "missing.json")
        assert pipeline.step == ImportStep.UPLOAD
        assert pipeline.source is None

        extraction = pipeline.extract(_write_quote(tmp_path, QUOTE_ROWS))
        assert len(extraction.components) == 2
        assert pipeline.step == ImportStep.EXTRACTING
        assert pipeline.source.file_name == "quote.json"

    def test_unreadable_file_with_artifact_store_allows_retry(self, tmp_path, repo, config):
        pipeline = ImportPipeline(
            JsonFileExtractor(), ComponentMatcher(), repo,
            artifact_store=ArtifactStore(tmp_path / "artifacts"),
            config=config,
        )

        with pytest.raises(ExtractionFailure) as exc_info:
            pipeline.extract(tmp_path / "missing.json")
        assert exc_info.value.source == "missing.json"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert pipeline.step == ImportStep.UPLOAD
        assert pipeline.source is None

        pipeline.extract(_write_quote(tmp_path, QUOTE_ROWS))
        session = asyncio.run(pipeline.match())
        assert pipeline.step == ImportStep.PREVIEW
        assert len(session.state.candidates) == 2
