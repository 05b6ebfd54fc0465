"""Exchange rate sources.

The normalizer only needs an ExchangeRates value; where it comes from is
behind the RateSource protocol so a live feed can replace the configured
static rates.
"""

from decimal import Decimal
from typing import Protocol

from core.config import AppConfig
from pricing.models import ExchangeRates


class RateSource(Protocol):
    """Protocol for exchange rate retrieval."""

    def get_rates(self) -> ExchangeRates:
        """Return current NIS-based exchange rates."""
        ...


class StaticRateSource:
    """Fixed rates, typically taken from configuration."""

    def __init__(self, usd_to_ils: Decimal, eur_to_ils: Decimal):
        self._rates = ExchangeRates(usd_to_ils=usd_to_ils, eur_to_ils=eur_to_ils)

    @classmethod
    def from_config(cls, config: AppConfig) -> "StaticRateSource":
        return cls(config.usd_to_ils_rate, config.eur_to_ils_rate)

    def get_rates(self) -> ExchangeRates:
        return self._rates
