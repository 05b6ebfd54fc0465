"""Component Library Database Operations.

This module handles all database operations for the component library:
- Schema initialization
- Component CRUD and current-price updates
- Price history with the single "current price" row per component
- Supplier quote records

Decimal prices are stored as TEXT to keep exact values.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional, Union

from core.models.canonical import (
    LibraryComponent,
    Money,
    NormalizedPriceSet,
    PriceHistoryEntry,
    QuoteRecord,
)


# Default database path (repository root)
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "component_library.db"

DbPath = Union[str, Path]


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _enum(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


@contextmanager
def _connect(db_path: DbPath) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_component_library_db(db_path: DbPath = DEFAULT_DB_PATH) -> None:
    """Initialize component library tables.

    Creates:
    - components: Library components with their current price
    - component_quote_history: Price observations per supplier quote
    - supplier_quotes: Imported quote documents

    Args:
        db_path: Path to SQLite database file
    """
    with _connect(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS components (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                manufacturer TEXT,
                manufacturer_pn TEXT,
                category TEXT NOT NULL DEFAULT 'other',
                component_type TEXT NOT NULL DEFAULT 'hardware',
                labor_subtype TEXT,
                supplier TEXT,
                notes TEXT,
                unit_cost_nis TEXT NOT NULL DEFAULT '0',
                unit_cost_usd TEXT,
                unit_cost_eur TEXT,
                currency TEXT NOT NULL DEFAULT 'NIS',
                original_cost TEXT,
                msrp_price TEXT,
                msrp_currency TEXT,
                partner_discount_percent TEXT,
                quote_date TEXT,
                quote_file_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS supplier_quotes (
                id TEXT PRIMARY KEY,
                file_name TEXT NOT NULL,
                file_url TEXT NOT NULL,
                file_type TEXT,
                document_type TEXT,
                extraction_method TEXT,
                confidence_score REAL,
                total_components INTEGER DEFAULT 0,
                supplier_name TEXT,
                quote_date TEXT,
                status TEXT NOT NULL DEFAULT 'completed',
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS component_quote_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                component_id TEXT NOT NULL REFERENCES components(id),
                quote_id TEXT REFERENCES supplier_quotes(id),
                unit_price_nis TEXT,
                unit_price_usd TEXT,
                unit_price_eur TEXT,
                currency TEXT NOT NULL DEFAULT 'NIS',
                quote_date TEXT,
                supplier_name TEXT,
                confidence_score REAL,
                is_current_price INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        # Indexes for lookups and the current-price invariant
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_components_manufacturer_pn
            ON components(manufacturer, manufacturer_pn)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_history_component
            ON component_quote_history(component_id, is_current_price)
        """)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_history_one_current
            ON component_quote_history(component_id) WHERE is_current_price = 1
        """)

        conn.commit()


# =============================================================================
# Components
# =============================================================================

def create_component(
    component: LibraryComponent,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> LibraryComponent:
    """Insert a new component.

    Args:
        component: Component to store; ``id`` is generated when None
        db_path: Path to database

    Returns:
        Stored LibraryComponent with id and timestamps populated
    """
    now = datetime.now()
    stored = component.model_copy(update={
        "id": component.id or uuid.uuid4().hex,
        "created_at": now,
        "updated_at": now,
    })

    with _connect(db_path) as conn:
        conn.execute("""
            INSERT INTO components
            (id, name, description, manufacturer, manufacturer_pn, category,
             component_type, labor_subtype, supplier, notes,
             unit_cost_nis, unit_cost_usd, unit_cost_eur, currency, original_cost,
             msrp_price, msrp_currency, partner_discount_percent,
             quote_date, quote_file_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            stored.id,
            stored.name,
            stored.description,
            stored.manufacturer,
            stored.manufacturer_pn,
            stored.category,
            _enum(stored.component_type),
            _enum(stored.labor_subtype),
            stored.supplier,
            stored.notes,
            _dec(stored.unit_cost_nis),
            _dec(stored.unit_cost_usd),
            _dec(stored.unit_cost_eur),
            _enum(stored.currency),
            _dec(stored.original_cost),
            _dec(stored.msrp_price),
            _enum(stored.msrp_currency),
            _dec(stored.partner_discount_percent),
            stored.quote_date.isoformat() if stored.quote_date else None,
            stored.quote_file_url,
            now.isoformat(),
            now.isoformat(),
        ))
        conn.commit()

    return stored


def update_component_prices(
    component_id: str,
    prices: NormalizedPriceSet,
    msrp: Optional[Money] = None,
    partner_discount_percent: Optional[Decimal] = None,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> bool:
    """Replace a component's live price fields.

    MSRP fields are only overwritten when ``msrp`` is given.

    Returns:
        True if the component exists and was updated
    """
    now = datetime.now().isoformat()

    with _connect(db_path) as conn:
        cursor = conn.cursor()
        if msrp is not None:
            cursor.execute("""
                UPDATE components
                SET unit_cost_nis = ?, unit_cost_usd = ?, unit_cost_eur = ?,
                    currency = ?, original_cost = ?,
                    msrp_price = ?, msrp_currency = ?, partner_discount_percent = ?,
                    updated_at = ?
                WHERE id = ?
            """, (
                _dec(prices.unit_cost_nis), _dec(prices.unit_cost_usd), _dec(prices.unit_cost_eur),
                prices.currency.value, _dec(prices.original_cost),
                _dec(msrp.amount), msrp.currency.value, _dec(partner_discount_percent),
                now, component_id,
            ))
        else:
            cursor.execute("""
                UPDATE components
                SET unit_cost_nis = ?, unit_cost_usd = ?, unit_cost_eur = ?,
                    currency = ?, original_cost = ?, updated_at = ?
                WHERE id = ?
            """, (
                _dec(prices.unit_cost_nis), _dec(prices.unit_cost_usd), _dec(prices.unit_cost_eur),
                prices.currency.value, _dec(prices.original_cost), now, component_id,
            ))
        conn.commit()
        return cursor.rowcount > 0


def get_component(
    component_id: str,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> Optional[LibraryComponent]:
    """Look up a component by id."""
    with _connect(db_path) as conn:
        row = conn.execute("SELECT * FROM components WHERE id = ?", (component_id,)).fetchone()
        return _row_to_component(row) if row else None


def list_components(db_path: DbPath = DEFAULT_DB_PATH) -> List[LibraryComponent]:
    """All components in insertion order (the matcher's scan order)."""
    with _connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM components ORDER BY rowid").fetchall()
        return [_row_to_component(row) for row in rows]


# =============================================================================
# Price History
# =============================================================================

def _insert_history(
    conn: sqlite3.Connection,
    component_id: str,
    quote_id: Optional[str],
    entry: PriceHistoryEntry,
) -> PriceHistoryEntry:
    now = datetime.now()
    cursor = conn.execute("""
        INSERT INTO component_quote_history
        (component_id, quote_id, unit_price_nis, unit_price_usd, unit_price_eur,
         currency, quote_date, supplier_name, confidence_score, is_current_price, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        component_id,
        quote_id,
        _dec(entry.unit_price_nis),
        _dec(entry.unit_price_usd),
        _dec(entry.unit_price_eur),
        _enum(entry.currency),
        entry.quote_date.isoformat() if entry.quote_date else None,
        entry.supplier_name,
        entry.confidence_score,
        1 if entry.is_current_price else 0,
        now.isoformat(),
    ))
    return entry.model_copy(update={
        "id": cursor.lastrowid,
        "component_id": component_id,
        "quote_id": quote_id,
        "created_at": now,
    })


def clear_current_price_flag(
    component_id: str,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> int:
    """Unset ``is_current_price`` on every history row of a component.

    Returns:
        Number of rows that were current (0 or 1)
    """
    with _connect(db_path) as conn:
        cursor = conn.execute("""
            UPDATE component_quote_history
            SET is_current_price = 0
            WHERE component_id = ? AND is_current_price = 1
        """, (component_id,))
        conn.commit()
        return cursor.rowcount


def append_price_history(
    component_id: str,
    quote_id: Optional[str],
    entry: PriceHistoryEntry,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> PriceHistoryEntry:
    """Append a price history row.

    A row marked current violates the one-current-row index unless the
    previous current row was cleared first.

    Raises:
        sqlite3.IntegrityError: If another current row exists for the component
    """
    with _connect(db_path) as conn:
        stored = _insert_history(conn, component_id, quote_id, entry)
        conn.commit()
        return stored


def record_current_price(
    component_id: str,
    quote_id: Optional[str],
    entry: PriceHistoryEntry,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> PriceHistoryEntry:
    """Clear the current flag and append a new current row in one transaction."""
    entry = entry.model_copy(update={"is_current_price": True})
    with _connect(db_path) as conn:
        try:
            conn.execute("""
                UPDATE component_quote_history
                SET is_current_price = 0
                WHERE component_id = ? AND is_current_price = 1
            """, (component_id,))
            stored = _insert_history(conn, component_id, quote_id, entry)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        return stored


def get_price_history(
    component_id: str,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> List[PriceHistoryEntry]:
    """Price history of a component, oldest first."""
    with _connect(db_path) as conn:
        rows = conn.execute("""
            SELECT * FROM component_quote_history
            WHERE component_id = ?
            ORDER BY id
        """, (component_id,)).fetchall()
        return [_row_to_history(row) for row in rows]


def get_current_price(
    component_id: str,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> Optional[PriceHistoryEntry]:
    """The history row currently flagged as the component's price."""
    with _connect(db_path) as conn:
        row = conn.execute("""
            SELECT * FROM component_quote_history
            WHERE component_id = ? AND is_current_price = 1
        """, (component_id,)).fetchone()
        return _row_to_history(row) if row else None


# =============================================================================
# Supplier Quotes
# =============================================================================

def create_quote_record(
    record: QuoteRecord,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> str:
    """Insert a supplier quote record.

    Returns:
        The quote id
    """
    quote_id = record.id or uuid.uuid4().hex
    with _connect(db_path) as conn:
        conn.execute("""
            INSERT INTO supplier_quotes
            (id, file_name, file_url, file_type, document_type, extraction_method,
             confidence_score, total_components, supplier_name, quote_date, status,
             metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            quote_id,
            record.file_name,
            record.file_url,
            record.file_type,
            record.document_type,
            record.extraction_method,
            record.confidence_score,
            record.total_components,
            record.supplier_name,
            record.quote_date.isoformat() if record.quote_date else None,
            _enum(record.status),
            json.dumps(record.metadata, default=str),
            datetime.now().isoformat(),
        ))
        conn.commit()
    return quote_id


def get_quote_record(
    quote_id: str,
    db_path: DbPath = DEFAULT_DB_PATH,
) -> Optional[QuoteRecord]:
    """Look up a supplier quote record by id."""
    with _connect(db_path) as conn:
        row = conn.execute("SELECT * FROM supplier_quotes WHERE id = ?", (quote_id,)).fetchone()
        return _row_to_quote(row) if row else None


# =============================================================================
# Repository
# =============================================================================

class SQLiteComponentRepository:
    """Component library repository over a SQLite file.

    Example:
        repo = SQLiteComponentRepository(config.db_path)
        repo.init_db()
        library = repo.list_components()
    """

    def __init__(self, db_path: DbPath = DEFAULT_DB_PATH):
        self.db_path = db_path

    def init_db(self) -> None:
        init_component_library_db(self.db_path)

    def create_component(self, component: LibraryComponent) -> LibraryComponent:
        return create_component(component, db_path=self.db_path)

    def update_component_prices(self, component_id: str, prices: NormalizedPriceSet,
                                msrp: Optional[Money] = None,
                                partner_discount_percent: Optional[Decimal] = None) -> bool:
        return update_component_prices(
            component_id, prices, msrp, partner_discount_percent, db_path=self.db_path
        )

    def append_price_history(self, component_id: str, quote_id: Optional[str],
                             entry: PriceHistoryEntry) -> PriceHistoryEntry:
        return append_price_history(component_id, quote_id, entry, db_path=self.db_path)

    def clear_current_price_flag(self, component_id: str) -> int:
        return clear_current_price_flag(component_id, db_path=self.db_path)

    def record_current_price(self, component_id: str, quote_id: Optional[str],
                             entry: PriceHistoryEntry) -> PriceHistoryEntry:
        return record_current_price(component_id, quote_id, entry, db_path=self.db_path)

    def create_quote_record(self, record: QuoteRecord) -> str:
        return create_quote_record(record, db_path=self.db_path)

    def get_component(self, component_id: str) -> Optional[LibraryComponent]:
        return get_component(component_id, db_path=self.db_path)

    def list_components(self) -> List[LibraryComponent]:
        return list_components(db_path=self.db_path)

    def get_price_history(self, component_id: str) -> List[PriceHistoryEntry]:
        return get_price_history(component_id, db_path=self.db_path)

    def get_current_price(self, component_id: str) -> Optional[PriceHistoryEntry]:
        return get_current_price(component_id, db_path=self.db_path)

    def get_quote_record(self, quote_id: str) -> Optional[QuoteRecord]:
        return get_quote_record(quote_id, db_path=self.db_path)


# =============================================================================
# Helpers
# =============================================================================

def _row_to_component(row: sqlite3.Row) -> LibraryComponent:
    """Convert a database row to LibraryComponent."""
    return LibraryComponent(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        manufacturer=row["manufacturer"],
        manufacturer_pn=row["manufacturer_pn"],
        category=row["category"],
        component_type=row["component_type"],
        labor_subtype=row["labor_subtype"],
        supplier=row["supplier"],
        notes=row["notes"],
        unit_cost_nis=row["unit_cost_nis"],
        unit_cost_usd=row["unit_cost_usd"],
        unit_cost_eur=row["unit_cost_eur"],
        currency=row["currency"],
        original_cost=row["original_cost"],
        msrp_price=row["msrp_price"],
        msrp_currency=row["msrp_currency"],
        partner_discount_percent=row["partner_discount_percent"],
        quote_date=row["quote_date"],
        quote_file_url=row["quote_file_url"],
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
    )


def _row_to_history(row: sqlite3.Row) -> PriceHistoryEntry:
    """Convert a database row to PriceHistoryEntry."""
    return PriceHistoryEntry(
        id=row["id"],
        component_id=row["component_id"],
        quote_id=row["quote_id"],
        unit_price_nis=row["unit_price_nis"],
        unit_price_usd=row["unit_price_usd"],
        unit_price_eur=row["unit_price_eur"],
        currency=row["currency"],
        quote_date=row["quote_date"],
        supplier_name=row["supplier_name"],
        confidence_score=row["confidence_score"],
        is_current_price=bool(row["is_current_price"]),
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )


def _row_to_quote(row: sqlite3.Row) -> QuoteRecord:
    """Convert a database row to QuoteRecord."""
    return QuoteRecord(
        id=row["id"],
        file_name=row["file_name"],
        file_url=row["file_url"],
        file_type=row["file_type"],
        document_type=row["document_type"],
        extraction_method=row["extraction_method"],
        confidence_score=row["confidence_score"],
        total_components=row["total_components"] or 0,
        supplier_name=row["supplier_name"],
        quote_date=row["quote_date"],
        status=row["status"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )
