"""Commission rule sets.

CommissionRules is the immutable snapshot the calculator works on.
CommissionRuleSet is its persisted, versioned form: every publication adds a
new version and deactivates the previous one, and old versions stay so that
historical sub-orders can be explained by the rules they were priced with.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from protean import Index
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text

from settlement.commission.calculator import resolve_rate
from settlement.commission.events import CommissionRulesPublished
from settlement.domain import settlement

ZERO = Decimal(0)
ONE = Decimal(1)


def to_rate(value) -> Decimal:
    """Coerce ints, strings and floats to an exact Decimal rate."""
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError({"rate": [f"{value!r} is not a valid rate"]}) from None
    if not rate.is_finite():
        raise ValidationError({"rate": [f"{value!r} is not a valid rate"]})
    return rate


def _rate_map(rates) -> dict[str, Decimal]:
    return {str(k): to_rate(v) for k, v in (rates or {}).items()}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TierThreshold:
    """Trailing sales volume (minor units) at which ``tier`` starts."""

    volume: int
    tier: str


@dataclass(frozen=True)
class CommissionRules:
    version: int
    default_rate: Decimal
    category_rates: dict[str, Decimal] = field(default_factory=dict)
    tier_rates: dict[str, Decimal] = field(default_factory=dict)
    tier_category_rates: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    tier_thresholds: tuple[TierThreshold, ...] = ()
    seller_rates: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        version,
        default_rate,
        category_rates=None,
        tier_rates=None,
        tier_category_rates=None,
        tier_thresholds=(),
        seller_rates=None,
    ) -> "CommissionRules":
        """Normalise loosely typed input (API payloads, stored JSON) into a snapshot."""
        thresholds = []
        for threshold in tier_thresholds or ():
            if isinstance(threshold, TierThreshold):
                thresholds.append(threshold)
            elif isinstance(threshold, dict):
                thresholds.append(TierThreshold(volume=int(threshold["volume"]), tier=str(threshold["tier"])))
            else:
                volume, tier = threshold
                thresholds.append(TierThreshold(volume=int(volume), tier=str(tier)))

        return cls(
            version=version,
            default_rate=to_rate(default_rate),
            category_rates=_rate_map(category_rates),
            tier_rates=_rate_map(tier_rates),
            tier_category_rates={
                str(tier): _rate_map(overrides) for tier, overrides in (tier_category_rates or {}).items()
            },
            tier_thresholds=tuple(thresholds),
            seller_rates=_rate_map(seller_rates),
        )

    @property
    def tier_order(self) -> list[str]:
        """Tier names from lowest to highest."""
        return [threshold.tier for threshold in sorted(self.tier_thresholds, key=lambda t: t.volume)]

    @property
    def known_categories(self) -> list[str]:
        categories = set(self.category_rates)
        for overrides in self.tier_category_rates.values():
            categories.update(overrides)
        return sorted(categories)

    def validate(self) -> None:
        """Reject out-of-range rates, malformed thresholds and rates that rise with tier."""
        errors: dict[str, list[str]] = {}

        def check_rate(path, rate):
            if not (ZERO <= rate <= ONE):
                errors.setdefault(path, []).append(f"Rate {rate} must be between 0 and 1")

        check_rate("default_rate", self.default_rate)
        for category, rate in self.category_rates.items():
            check_rate(f"category_rates.{category}", rate)
        for tier, rate in self.tier_rates.items():
            check_rate(f"tier_rates.{tier}", rate)
        for tier, overrides in self.tier_category_rates.items():
            for category, rate in overrides.items():
                check_rate(f"tier_category_rates.{tier}.{category}", rate)
        for seller_id, rate in self.seller_rates.items():
            check_rate(f"seller_rates.{seller_id}", rate)

        seen = set()
        for threshold in self.tier_thresholds:
            if threshold.volume < 0:
                errors.setdefault("tier_thresholds", []).append(
                    f"Threshold for tier {threshold.tier} cannot be negative"
                )
            if not threshold.tier:
                errors.setdefault("tier_thresholds", []).append("Tier name is required")
            if threshold.tier in seen:
                errors.setdefault("tier_thresholds", []).append(f"Tier {threshold.tier} is declared twice")
            seen.add(threshold.tier)

        for tier in list(self.tier_rates) + list(self.tier_category_rates):
            if tier not in seen:
                errors.setdefault("tiers", []).append(f"Tier {tier} has rates but no threshold")

        if errors:
            raise ValidationError(errors)

        # Effective rates must not rise as the tier rises, for any seller and category
        ladder = [None] + self.tier_order
        for seller_id in [None] + sorted(self.seller_rates):
            for category in self.known_categories + [None]:
                label = category or "uncategorised"
                if seller_id is not None:
                    label = f"{label} (seller {seller_id})"
                previous_tier, previous_rate = None, resolve_rate(self, None, category, seller_id)
                for tier in ladder[1:]:
                    rate = resolve_rate(self, tier, category, seller_id)
                    if rate > previous_rate:
                        errors.setdefault("monotonicity", []).append(
                            f"{label}: rate {rate} for tier {tier} exceeds {previous_rate} for "
                            f"{previous_tier or 'untiered'}"
                        )
                    previous_tier, previous_rate = tier, rate

        if errors:
            raise ValidationError(errors)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@settlement.aggregate(indexes=[Index("version", unique=True)])
class CommissionRuleSet:
    version = Integer(required=True, min_value=1)
    default_rate = String(required=True, max_length=16)  # Exact decimal string
    category_rates = Text()  # JSON: {category: rate}
    tier_rates = Text()  # JSON: {tier: rate}
    tier_category_rates = Text()  # JSON: {tier: {category: rate}}
    tier_thresholds = Text()  # JSON: [{"volume": int, "tier": str}]
    seller_rates = Text()  # JSON: {seller_id: rate}
    is_active = Boolean(default=False)
    published_by = String(max_length=64)
    created_at = DateTime()
    activated_at = DateTime()
    deactivated_at = DateTime()

    @classmethod
    def from_rules(cls, rules: CommissionRules, published_by=None):
        return cls(
            version=rules.version,
            default_rate=str(rules.default_rate),
            category_rates=json.dumps({k: str(v) for k, v in rules.category_rates.items()}),
            tier_rates=json.dumps({k: str(v) for k, v in rules.tier_rates.items()}),
            tier_category_rates=json.dumps(
                {tier: {k: str(v) for k, v in overrides.items()} for tier, overrides in rules.tier_category_rates.items()}
            ),
            tier_thresholds=json.dumps([{"volume": t.volume, "tier": t.tier} for t in rules.tier_thresholds]),
            seller_rates=json.dumps({k: str(v) for k, v in rules.seller_rates.items()}),
            is_active=False,
            published_by=published_by,
            created_at=datetime.now(UTC),
        )

    def to_rules(self) -> CommissionRules:
        return CommissionRules.build(
            version=self.version,
            default_rate=self.default_rate,
            category_rates=json.loads(self.category_rates or "{}"),
            tier_rates=json.loads(self.tier_rates or "{}"),
            tier_category_rates=json.loads(self.tier_category_rates or "{}"),
            tier_thresholds=json.loads(self.tier_thresholds or "[]"),
            seller_rates=json.loads(self.seller_rates or "{}"),
        )

    def activate(self, previous_version=None, now=None):
        now = now or datetime.now(UTC)
        self.is_active = True
        self.activated_at = now

        self.raise_(
            CommissionRulesPublished(
                version=self.version,
                previous_version=previous_version,
                default_rate=self.default_rate,
                tiers=json.dumps(self.to_rules().tier_order),
                published_by=self.published_by,
                published_at=now,
            )
        )

    def deactivate(self, now=None):
        self.is_active = False
        self.deactivated_at = now or datetime.now(UTC)
