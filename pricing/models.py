"""Pricing Data Models.

Money types (Currency, Money, PriceTriple, NormalizedPriceSet) live in
core.models.canonical and are re-exported here next to the exchange-rate
model used by the normalizer.
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from core.models.canonical import (
    Currency,
    Money,
    PriceTriple,
    NormalizedPriceSet,
)


class ExchangeRates(BaseModel):
    """NIS-based exchange rates.

    Attributes:
        usd_to_ils: NIS per 1 USD
        eur_to_ils: NIS per 1 EUR
    """
    usd_to_ils: Decimal = Field(..., description="NIS per 1 USD")
    eur_to_ils: Decimal = Field(..., description="NIS per 1 EUR")

    @field_validator("usd_to_ils", "eur_to_ils")
    @classmethod
    def _positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Exchange rate must be positive")
        return v

    @property
    def usd_to_eur(self) -> Decimal:
        """EUR per 1 USD, derived from the two NIS rates."""
        return self.usd_to_ils / self.eur_to_ils


__all__ = [
    "Currency",
    "Money",
    "PriceTriple",
    "NormalizedPriceSet",
    "ExchangeRates",
]
