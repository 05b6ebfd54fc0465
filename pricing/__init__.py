"""Pricing - three-currency normalization and MSRP/margin math.

Usage:
    from pricing import PriceNormalizer, StaticRateSource

    normalizer = PriceNormalizer(StaticRateSource(Decimal("3.7"), Decimal("4.0")).get_rates())
    price_set = normalizer.normalize(candidate.prices, candidate.currency)
"""

from pricing.models import ExchangeRates
from pricing.normalizer import (
    PriceNormalizer,
    compute_partner_from_msrp,
    compute_discount_from_prices,
    convert_to_all_currencies,
    detect_original_currency,
    round_money,
)
from pricing.rates import RateSource, StaticRateSource

__all__ = [
    "ExchangeRates",
    "PriceNormalizer",
    "compute_partner_from_msrp",
    "compute_discount_from_prices",
    "convert_to_all_currencies",
    "detect_original_currency",
    "round_money",
    "RateSource",
    "StaticRateSource",
]
