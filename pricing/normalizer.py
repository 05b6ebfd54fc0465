"""Price normalization and MSRP/margin math.

Exposes:
- PriceNormalizer(rates).normalize(prices, currency, original_cost) -> NormalizedPriceSet
- compute_partner_from_msrp(msrp_price, msrp_currency, margin_percent) -> PriceTriple
- compute_discount_from_prices(msrp_price, partner_price) -> Optional[Decimal]

Margins are never clamped: a negative margin is a markup and a margin
above 100 gives a negative partner price. Clamping belongs to input forms.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from core.models.canonical import Currency, PriceTriple, NormalizedPriceSet
from pricing.models import ExchangeRates


CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# Currency Conversion
# =============================================================================

def convert_to_all_currencies(
    amount: Decimal,
    original_currency: Currency,
    rates: ExchangeRates,
) -> NormalizedPriceSet:
    """Convert an amount in one currency to all three.

    The original amount is kept as-is; converted values are rounded to cents.
    """
    amount = _to_decimal(amount)
    original_currency = Currency(original_currency)

    if original_currency == Currency.NIS:
        nis = amount
        usd = round_money(amount / rates.usd_to_ils)
        eur = round_money(amount / rates.eur_to_ils)
    elif original_currency == Currency.USD:
        usd = amount
        nis = round_money(amount * rates.usd_to_ils)
        eur = round_money(amount * rates.usd_to_eur)
    else:
        eur = amount
        nis = round_money(amount * rates.eur_to_ils)
        usd = round_money(amount / rates.usd_to_eur)

    return NormalizedPriceSet(
        unit_cost_nis=nis,
        unit_cost_usd=usd,
        unit_cost_eur=eur,
        currency=original_currency,
        original_cost=amount,
    )


def detect_original_currency(
    prices: PriceTriple,
    declared_currency: Optional[Currency] = None,
) -> Tuple[Currency, Decimal]:
    """Pick the authoritative (currency, amount) from a price triple.

    Priority:
    1. The declared currency, when it holds a positive value
    2. The first positive value in NIS, USD, EUR order
    3. NIS with 0
    """
    if declared_currency is not None:
        amount = prices.get(declared_currency)
        if amount is not None and amount > 0:
            return Currency(declared_currency), amount

    first = prices.first_present()
    if first is not None:
        return first.currency, first.amount

    return Currency.NIS, Decimal("0")


# =============================================================================
# MSRP / Margin
# =============================================================================

def compute_partner_from_msrp(
    msrp_price: Decimal,
    msrp_currency: Currency,
    margin_percent: Decimal,
) -> PriceTriple:
    """Partner price = MSRP x (1 - margin / 100).

    Only the MSRP currency is populated; the other two fields are None
    because they were not recomputed and any older value is stale.
    """
    msrp_price = _to_decimal(msrp_price)
    margin_percent = _to_decimal(margin_percent)
    partner = msrp_price * (1 - margin_percent / HUNDRED)
    return PriceTriple().with_only(msrp_currency, partner)


def compute_discount_from_prices(
    msrp_price: Optional[Decimal],
    partner_price: Optional[Decimal],
) -> Optional[Decimal]:
    """Discount % = (MSRP - partner) / MSRP x 100, rounded to 2 places.

    Returns None when either price is missing or MSRP is not positive.
    """
    msrp_price = _to_decimal(msrp_price)
    partner_price = _to_decimal(partner_price)
    if msrp_price is None or partner_price is None or msrp_price <= 0:
        return None
    return round_money((msrp_price - partner_price) / msrp_price * HUNDRED)


# =============================================================================
# Normalizer
# =============================================================================

class PriceNormalizer:
    """Fills in the three-currency record before persistence.

    Example:
        normalizer = PriceNormalizer(StaticRateSource.from_config(config).get_rates())
        price_set = normalizer.normalize(PriceTriple(usd=Decimal("75")), Currency.USD)
        price_set.unit_cost_nis  # Decimal('277.50') at 3.7
    """

    def __init__(self, rates: ExchangeRates):
        self.rates = rates

    def normalize(
        self,
        prices: PriceTriple,
        currency: Optional[Currency] = None,
        original_cost: Optional[Decimal] = None,
    ) -> NormalizedPriceSet:
        """Normalize a price triple to a fully populated NormalizedPriceSet.

        Args:
            prices: Extracted prices; any subset may be present
            currency: Declared authoritative currency
            original_cost: Used only when ``prices`` holds no positive value;
                interpreted in ``currency`` (NIS when absent)

        Returns:
            NormalizedPriceSet whose ``original_cost`` is the authoritative amount
        """
        detected_currency, amount = detect_original_currency(prices, currency)

        if amount <= 0 and original_cost is not None and _to_decimal(original_cost) > 0:
            detected_currency = Currency(currency) if currency is not None else Currency.NIS
            amount = _to_decimal(original_cost)

        return convert_to_all_currencies(amount, detected_currency, self.rates)

    def partner_from_msrp(self, msrp_price: Decimal, msrp_currency: Currency,
                          margin_percent: Decimal) -> PriceTriple:
        return compute_partner_from_msrp(msrp_price, msrp_currency, margin_percent)

    def discount_from_prices(self, msrp_price: Optional[Decimal],
                             partner_price: Optional[Decimal]) -> Optional[Decimal]:
        return compute_discount_from_prices(msrp_price, partner_price)
