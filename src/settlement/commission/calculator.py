"""CommissionCalculator: pure functions over an immutable rule snapshot.

Nothing here touches the database or the clock. Callers pass the rules
version they priced with, the seller's trailing volume and the line amounts,
and get the same answer every time.

Rate precedence, most specific first:
    1. seller-specific rate (a negotiated rate; applies at every tier)
    2. tier-specific category override
    3. tier default
    4. category default
    5. global default
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_EVEN, Decimal
from operator import attrgetter


def resolve_tier(volume: int, thresholds) -> str | None:
    """Tier earned by ``volume`` of trailing sales.

    Thresholds are walked in ascending volume order and the last one the
    volume reaches wins. Thresholds with equal volume keep their declared
    order, so the one declared later (the higher tier) wins the tie.
    Returns None below every threshold.
    """
    tier = None
    for threshold in sorted(thresholds, key=attrgetter("volume")):
        if threshold.volume > volume:
            break
        tier = threshold.tier
    return tier


def resolve_rate(rules, tier: str | None, category: str | None, seller_id: str | None = None) -> Decimal:
    if seller_id is not None and seller_id in rules.seller_rates:
        return rules.seller_rates[seller_id]

    if tier is not None:
        overrides = rules.tier_category_rates.get(tier, {})
        if category is not None and category in overrides:
            return overrides[category]
        if tier in rules.tier_rates:
            return rules.tier_rates[tier]

    if category is not None and category in rules.category_rates:
        return rules.category_rates[category]

    return rules.default_rate


def line_commission(unit_price: int, quantity: int, rate: Decimal) -> int:
    """Commission on ``quantity`` units, rounded half-even to the minor unit."""
    if unit_price < 0 or quantity < 0:
        raise ValueError("unit_price and quantity must be non-negative")

    amount = Decimal(unit_price) * quantity * rate
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def sub_order_commission(lines: Iterable[tuple[int, int, Decimal]]) -> int:
    """Sum of per-line commissions for ``(unit_price, quantity, rate)`` lines.

    Rounding happens line by line, never on the sub-order total.
    """
    return sum(line_commission(unit_price, quantity, rate) for unit_price, quantity, rate in lines)


def net_payable(total: int, commission: int) -> int:
    return max(0, total - commission)
