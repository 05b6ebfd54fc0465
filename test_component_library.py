"""
Component library database tests.

Covers component storage, live price updates, quote records and the
single current price row per component.
"""

import pytest
import os
import sqlite3
import tempfile
from datetime import date
from decimal import Decimal

from component_library import SQLiteComponentRepository
from core.models.canonical import (
    ComponentType,
    Currency,
    LibraryComponent,
    Money,
    NormalizedPriceSet,
    PriceHistoryEntry,
    QuoteRecord,
)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup - try to delete, ignore errors on Windows
    try:
        os.unlink(db_path)
    except PermissionError:
        pass


@pytest.fixture
def repo(temp_db):
    repository = SQLiteComponentRepository(temp_db)
    repository.init_db()
    return repository


def _component(**overrides):
    data = dict(
        name="S7-1200 CPU",
        manufacturer="Siemens",
        manufacturer_pn="6ES7214-1AG40",
        category="plc",
        unit_cost_nis=Decimal("1850.00"),
        unit_cost_usd=Decimal("500"),
        unit_cost_eur=Decimal("462.50"),
        currency=Currency.USD,
        original_cost=Decimal("500"),
    )
    data.update(overrides)
    return LibraryComponent(**data)


def _entry(component_id, nis="100", current=True):
    return PriceHistoryEntry(
        component_id=component_id,
        unit_price_nis=Decimal(nis),
        currency=Currency.NIS,
        quote_date=date(2025, 3, 1),
        supplier_name="Acme",
        confidence_score=0.9,
        is_current_price=current,
    )


class TestComponents:
    """Component CRUD."""

    def test_init_is_idempotent(self, repo):
        repo.init_db()
        assert repo.list_components() == []

    def test_create_and_get(self, repo):
        stored = repo.create_component(_component(msrp_price=Decimal("650"), msrp_currency=Currency.USD))
        assert stored.id
        assert stored.created_at is not None

        loaded = repo.get_component(stored.id)
        assert loaded.name == "S7-1200 CPU"
        assert loaded.manufacturer_pn == "6ES7214-1AG40"
        assert loaded.unit_cost_nis == Decimal("1850.00")
        assert loaded.currency == Currency.USD
        assert loaded.msrp_price == Decimal("650")
        assert loaded.component_type == ComponentType.HARDWARE

    def test_get_missing(self, repo):
        assert repo.get_component("nope") is None

    def test_list_in_insertion_order(self, repo):
        names = ["B relay", "A sensor", "C cable"]
        for name in names:
            repo.create_component(_component(name=name))
        assert [c.name for c in repo.list_components()] == names

    def test_update_prices_keeps_msrp_when_not_given(self, repo):
        stored = repo.create_component(_component(msrp_price=Decimal("650"), msrp_currency=Currency.USD))
        prices = NormalizedPriceSet(
            unit_cost_nis=Decimal("370.00"), unit_cost_usd=Decimal("100"), unit_cost_eur=Decimal("92.50"),
            currency=Currency.USD, original_cost=Decimal("100"),
        )
        assert repo.update_component_prices(stored.id, prices)

        loaded = repo.get_component(stored.id)
        assert loaded.unit_cost_usd == Decimal("100")
        assert loaded.msrp_price == Decimal("650")

    def test_update_prices_with_msrp(self, repo):
        stored = repo.create_component(_component())
        prices = NormalizedPriceSet(
            unit_cost_nis=Decimal("277.50"), unit_cost_usd=Decimal("75"), unit_cost_eur=Decimal("69.38"),
            currency=Currency.USD, original_cost=Decimal("75"),
        )
        repo.update_component_prices(
            stored.id, prices, msrp=Money(currency=Currency.USD, amount=Decimal("100")),
            partner_discount_percent=Decimal("25"),
        )
        loaded = repo.get_component(stored.id)
        assert loaded.msrp_price == Decimal("100")
        assert loaded.partner_discount_percent == Decimal("25")

    def test_update_missing_component(self, repo):
        prices = NormalizedPriceSet(
            unit_cost_nis=Decimal("1"), unit_cost_usd=Decimal("1"), unit_cost_eur=Decimal("1"),
            currency=Currency.NIS, original_cost=Decimal("1"),
        )
        assert repo.update_component_prices("nope", prices) is False


class TestPriceHistory:
    """At most one current price row per component."""

    def test_append_and_read(self, repo):
        stored = repo.create_component(_component())
        entry = repo.append_price_history(stored.id, None, _entry(stored.id))
        assert entry.id is not None

        history = repo.get_price_history(stored.id)
        assert len(history) == 1
        assert history[0].unit_price_nis == Decimal("100")
        assert history[0].is_current_price
        assert repo.get_current_price(stored.id).id == entry.id

    def test_second_current_row_rejected(self, repo):
        stored = repo.create_component(_component())
        repo.append_price_history(stored.id, None, _entry(stored.id))
        with pytest.raises(sqlite3.IntegrityError):
            repo.append_price_history(stored.id, None, _entry(stored.id, nis="120"))

    def test_clear_then_append(self, repo):
        stored = repo.create_component(_component())
        repo.append_price_history(stored.id, None, _entry(stored.id))

        assert repo.clear_current_price_flag(stored.id) == 1
        repo.append_price_history(stored.id, None, _entry(stored.id, nis="120"))

        history = repo.get_price_history(stored.id)
        assert [h.is_current_price for h in history] == [False, True]
        assert repo.get_current_price(stored.id).unit_price_nis == Decimal("120")

    def test_clear_without_rows(self, repo):
        stored = repo.create_component(_component())
        assert repo.clear_current_price_flag(stored.id) == 0

    def test_non_current_rows_unlimited(self, repo):
        stored = repo.create_component(_component())
        for nis in ("1", "2", "3"):
            repo.append_price_history(stored.id, None, _entry(stored.id, nis=nis, current=False))
        assert len(repo.get_price_history(stored.id)) == 3
        assert repo.get_current_price(stored.id) is None

    def test_record_current_price(self, repo):
        stored = repo.create_component(_component())
        repo.record_current_price(stored.id, None, _entry(stored.id))
        repo.record_current_price(stored.id, None, _entry(stored.id, nis="130"))

        history = repo.get_price_history(stored.id)
        assert [h.is_current_price for h in history] == [False, True]
        assert repo.get_current_price(stored.id).unit_price_nis == Decimal("130")

    def test_record_current_price_rolls_back_clear(self, repo, monkeypatch):
        import component_library.db as library_db
        stored = repo.create_component(_component())
        repo.record_current_price(stored.id, None, _entry(stored.id))

        def broken_insert(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(library_db, "_insert_history", broken_insert)
        with pytest.raises(sqlite3.OperationalError):
            repo.record_current_price(stored.id, None, _entry(stored.id, nis="130"))

        assert repo.get_current_price(stored.id).unit_price_nis == Decimal("100")


class TestQuoteRecords:
    """Supplier quote records."""

    def test_create_and_get(self, repo):
        quote_id = repo.create_quote_record(QuoteRecord(
            file_name="quote.pdf",
            file_url="placeholder://file-not-stored/quote.pdf",
            file_type="pdf",
            total_components=3,
            supplier_name="Acme",
            quote_date=date(2025, 3, 1),
            metadata={"warnings": ["RTL document detected"]},
        ))
        assert quote_id

        loaded = repo.get_quote_record(quote_id)
        assert loaded.file_name == "quote.pdf"
        assert loaded.total_components == 3
        assert loaded.quote_date == date(2025, 3, 1)
        assert loaded.metadata == {"warnings": ["RTL document detected"]}
