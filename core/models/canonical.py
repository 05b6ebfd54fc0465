"""Core canonical data models for the component library.

These models represent extracted supplier-quote rows, library components,
price history and quote records in one standardized shape. Extractor output
uses flat camelCase keys (``manufacturerPN``, ``unitPriceUSD``, ``msrpPrice``);
the models accept those keys and fold flat price columns into a PriceTriple.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle various input formats from LLM extraction)
# =============================================================================

_CURRENCY_SYMBOLS = ("$", "€", "₪", "NIS", "USD", "EUR")


def _parse_decimal(value):
    """Parse decimal from various formats (string with currency symbols or commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not a price")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        for symbol in _CURRENCY_SYMBOLS:
            s = s.replace(symbol, "")
        s = s.replace(",", "").strip()
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse number: {value}")
    return value


def _parse_date(value):
    """Parse date from various string formats."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        # ISO timestamps from storage
        if "T" in s:
            s = s.split("T", 1)[0]
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y", "%m/%d/%Y"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Cannot parse date: {s}")
    return value


def _parse_currency(value):
    """Map currency labels and symbols to a Currency value."""
    if value is None or isinstance(value, Currency):
        return value
    if isinstance(value, str):
        s = value.strip().upper()
        if s == "":
            return None
        return _CURRENCY_ALIASES.get(s, s)
    return value


# Annotated types for automatic parsing
DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical data structures."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Enumerations
# =============================================================================

class Currency(str, Enum):
    """Supported pricing currencies."""
    NIS = "NIS"
    USD = "USD"
    EUR = "EUR"


_CURRENCY_ALIASES = {
    "ILS": "NIS",
    "₪": "NIS",
    "$": "USD",
    "€": "EUR",
}

CurrencyValue = Annotated[Currency, BeforeValidator(_parse_currency)]


class ComponentType(str, Enum):
    """Kind of library item."""
    HARDWARE = "hardware"
    SOFTWARE = "software"
    LABOR = "labor"


class LaborSubtype(str, Enum):
    """Labor classification, only meaningful for ComponentType.LABOR."""
    ENGINEERING = "engineering"
    COMMISSIONING = "commissioning"
    INSTALLATION = "installation"
    PROGRAMMING = "programming"


# =============================================================================
# Money
# =============================================================================

class Money(CanonicalBase):
    """An amount tagged with its currency (used for MSRP)."""
    currency: CurrencyValue
    amount: DecimalValue


class PriceTriple(CanonicalBase):
    """Per-currency unit prices as extracted; any field may be missing."""
    nis: Optional[DecimalValue] = Field(default=None, alias="unitPriceNIS")
    usd: Optional[DecimalValue] = Field(default=None, alias="unitPriceUSD")
    eur: Optional[DecimalValue] = Field(default=None, alias="unitPriceEUR")

    def get(self, currency: Currency) -> Optional[Decimal]:
        """Price in the given currency, or None."""
        return getattr(self, _CURRENCY_FIELDS[Currency(currency)])

    def with_only(self, currency: Currency, amount: Optional[Decimal]) -> "PriceTriple":
        """Triple holding ``amount`` in one currency and None elsewhere."""
        return PriceTriple(**{_CURRENCY_FIELDS[Currency(currency)]: amount})

    def first_present(self) -> Optional[Money]:
        """First positive price in NIS, USD, EUR order."""
        for currency in (Currency.NIS, Currency.USD, Currency.EUR):
            amount = self.get(currency)
            if amount is not None and amount > 0:
                return Money(currency=currency, amount=amount)
        return None

    def is_empty(self) -> bool:
        return self.first_present() is None


_CURRENCY_FIELDS = {
    Currency.NIS: "nis",
    Currency.USD: "usd",
    Currency.EUR: "eur",
}


class NormalizedPriceSet(CanonicalBase):
    """Fully populated prices in all three currencies.

    Attributes:
        unit_cost_nis: Price in NIS
        unit_cost_usd: Price in USD
        unit_cost_eur: Price in EUR
        currency: Authoritative (original) currency
        original_cost: Authoritative amount in ``currency``
    """
    unit_cost_nis: Decimal = Field(..., description="Price in NIS")
    unit_cost_usd: Decimal = Field(..., description="Price in USD")
    unit_cost_eur: Decimal = Field(..., description="Price in EUR")
    currency: Currency = Field(..., description="Authoritative currency")
    original_cost: Decimal = Field(..., description="Authoritative amount")


# =============================================================================
# Extracted Candidates
# =============================================================================

def _fold_extractor_keys(data: Any) -> Any:
    """Fold flat extractor keys into the nested shapes used by the models."""
    if not isinstance(data, dict):
        return data
    data = dict(data)

    if "prices" not in data:
        flat = {
            key: data.pop(key)
            for key in ("unitPriceNIS", "unitPriceUSD", "unitPriceEUR")
            if key in data
        }
        if flat:
            data["prices"] = flat

    if "msrp" not in data and data.get("msrpPrice") not in (None, ""):
        data["msrp"] = {
            "amount": data.pop("msrpPrice"),
            "currency": data.pop("msrpCurrency", None) or data.get("currency") or "USD",
        }
    else:
        data.pop("msrpPrice", None)
        data.pop("msrpCurrency", None)

    return data


class CandidateComponent(CanonicalBase):
    """One extracted quote row proposed for import.

    Attributes:
        name: Item name
        manufacturer: Manufacturer name
        manufacturer_pn: Manufacturer part number
        prices: Unit prices per currency as extracted
        currency: Authoritative currency tag, if the extractor declared one
        msrp: Manufacturer list price, if the document shows one
        partner_discount_percent: Discount of partner price from MSRP
        confidence: Extraction confidence (0..1)
        potential_rtl_issue: Part number may have been reversed by bidi text
    """
    name: str = Field(default="", description="Item name")
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_pn: Optional[str] = Field(default=None, alias="manufacturerPN")
    category: Optional[str] = None
    component_type: ComponentType = Field(default=ComponentType.HARDWARE, alias="componentType")
    labor_subtype: Optional[LaborSubtype] = Field(default=None, alias="laborSubtype")
    supplier: Optional[str] = None
    quantity: Optional[DecimalValue] = None
    notes: Optional[str] = None
    quote_date: Optional[DateValue] = Field(default=None, alias="quoteDate")

    prices: PriceTriple = Field(default_factory=PriceTriple)
    currency: Optional[CurrencyValue] = None
    msrp: Optional[Money] = None
    partner_discount_percent: Optional[DecimalValue] = Field(default=None, alias="partnerDiscountPercent")

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    potential_rtl_issue: bool = Field(default=False, alias="potentialRTLIssue")
    rtl_issue_reason: Optional[str] = Field(default=None, alias="rtlIssueReason")

    @model_validator(mode="before")
    @classmethod
    def _accept_extractor_keys(cls, data: Any) -> Any:
        return _fold_extractor_keys(data)


# =============================================================================
# Library Entities
# =============================================================================

class LibraryComponent(CanonicalBase):
    """A component stored in the library with its current price.

    ``id`` is None only before the component is first stored.
    """
    id: Optional[str] = Field(default=None, description="Library component identifier")
    name: str
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_pn: Optional[str] = Field(default=None, alias="manufacturerPN")
    category: str = Field(default="other")
    component_type: ComponentType = Field(default=ComponentType.HARDWARE, alias="componentType")
    labor_subtype: Optional[LaborSubtype] = Field(default=None, alias="laborSubtype")
    supplier: Optional[str] = None
    notes: Optional[str] = None

    unit_cost_nis: DecimalValue = Field(default=Decimal("0"))
    unit_cost_usd: Optional[DecimalValue] = None
    unit_cost_eur: Optional[DecimalValue] = None
    currency: CurrencyValue = Field(default=Currency.NIS)
    original_cost: Optional[DecimalValue] = None

    msrp_price: Optional[DecimalValue] = None
    msrp_currency: Optional[CurrencyValue] = None
    partner_discount_percent: Optional[DecimalValue] = None

    quote_date: Optional[DateValue] = None
    quote_file_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PriceHistoryEntry(CanonicalBase):
    """A price observation of a component taken from one supplier quote.

    At most one entry per component has ``is_current_price`` set.
    """
    id: Optional[int] = None
    component_id: str
    quote_id: Optional[str] = None
    unit_price_nis: Optional[DecimalValue] = None
    unit_price_usd: Optional[DecimalValue] = None
    unit_price_eur: Optional[DecimalValue] = None
    currency: CurrencyValue = Field(default=Currency.NIS)
    quote_date: Optional[DateValue] = None
    supplier_name: Optional[str] = None
    confidence_score: Optional[float] = None
    is_current_price: bool = False
    created_at: Optional[datetime] = None


class QuoteStatus(str, Enum):
    """Lifecycle of a stored supplier quote."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class QuoteRecord(CanonicalBase):
    """A supplier quote document that components were imported from."""
    id: Optional[str] = None
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    document_type: Optional[str] = None
    extraction_method: Optional[str] = None
    confidence_score: Optional[float] = None
    total_components: int = 0
    supplier_name: Optional[str] = None
    quote_date: Optional[DateValue] = None
    status: QuoteStatus = Field(default=QuoteStatus.COMPLETED)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
