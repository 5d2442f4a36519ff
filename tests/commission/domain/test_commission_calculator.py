"""Tests for commission rate resolution, rounding and rule-set validation."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError
from settlement.commission.calculator import (
    line_commission,
    net_payable,
    resolve_rate,
    resolve_tier,
    sub_order_commission,
)
from settlement.commission.rules import CommissionRules, TierThreshold, to_rate


def _make_rules(**overrides):
    defaults = {
        "version": 1,
        "default_rate": "0.15",
        "category_rates": {"electronics": "0.10", "books": "0.05"},
        "tier_rates": {"silver": "0.08", "gold": "0.06"},
        "tier_category_rates": {"silver": {"books": "0.04"}, "gold": {"books": "0.03"}},
        "tier_thresholds": ((100_000, "silver"), (500_000, "gold")),
    }
    defaults.update(overrides)
    return CommissionRules.build(**defaults)


class TestResolveTier:
    def test_below_every_threshold_has_no_tier(self):
        rules = _make_rules()
        assert resolve_tier(99_999, rules.tier_thresholds) is None

    def test_threshold_is_inclusive(self):
        rules = _make_rules()
        assert resolve_tier(100_000, rules.tier_thresholds) == "silver"

    def test_highest_reached_tier_wins(self):
        rules = _make_rules()
        assert resolve_tier(750_000, rules.tier_thresholds) == "gold"

    def test_declaration_order_does_not_matter(self):
        thresholds = (TierThreshold(500_000, "gold"), TierThreshold(100_000, "silver"))
        assert resolve_tier(200_000, thresholds) == "silver"

    def test_no_thresholds(self):
        assert resolve_tier(1_000_000, ()) is None

    def test_equal_volumes_resolve_to_tier_declared_later(self):
        thresholds = (TierThreshold(100, "silver"), TierThreshold(100, "gold"))
        assert resolve_tier(100, thresholds) == "gold"

    def test_equal_volumes_reversed_declaration(self):
        thresholds = (TierThreshold(100, "gold"), TierThreshold(100, "silver"))
        assert resolve_tier(100, thresholds) == "silver"

    def test_equal_volumes_below_threshold(self):
        thresholds = (TierThreshold(100, "silver"), TierThreshold(100, "gold"))
        assert resolve_tier(99, thresholds) is None


class TestResolveRate:
    def test_tier_category_override_wins(self):
        assert resolve_rate(_make_rules(), "silver", "books") == Decimal("0.04")

    def test_tier_default_beats_category_default(self):
        assert resolve_rate(_make_rules(), "silver", "electronics") == Decimal("0.08")

    def test_category_default_without_tier(self):
        assert resolve_rate(_make_rules(), None, "electronics") == Decimal("0.10")

    def test_global_default_for_unknown_category(self):
        assert resolve_rate(_make_rules(), None, "garden") == Decimal("0.15")

    def test_global_default_for_uncategorised_variant(self):
        assert resolve_rate(_make_rules(), None, None) == Decimal("0.15")

    def test_seller_rate_beats_tier_category_override(self):
        rules = _make_rules(seller_rates={"seller-vip": "0.02"})
        assert resolve_rate(rules, "silver", "books", "seller-vip") == Decimal("0.02")

    def test_seller_rate_applies_without_tier_or_category(self):
        rules = _make_rules(seller_rates={"seller-vip": "0.02"})
        assert resolve_rate(rules, None, None, "seller-vip") == Decimal("0.02")

    def test_other_sellers_use_tier_and_category_rates(self):
        rules = _make_rules(seller_rates={"seller-vip": "0.02"})
        assert resolve_rate(rules, "silver", "books", "seller-x") == Decimal("0.04")
        assert resolve_rate(rules, None, "electronics", "seller-x") == Decimal("0.10")

    def test_seller_rate_above_category_default_still_wins(self):
        rules = _make_rules(seller_rates={"seller-vip": "0.20"})
        assert resolve_rate(rules, "gold", "books", "seller-vip") == Decimal("0.20")

    def test_tier_without_rates_falls_back_to_category(self):
        rules = _make_rules(
            tier_rates={},
            tier_category_rates={},
            tier_thresholds=((100_000, "silver"),),
        )
        assert resolve_rate(rules, "silver", "books") == Decimal("0.05")


class TestLineCommission:
    def test_exact_amount(self):
        assert line_commission(10_000, 2, Decimal("0.10")) == 2_000

    def test_half_rounds_to_even_down(self):
        # 25 * 0.10 = 2.5
        assert line_commission(25, 1, Decimal("0.10")) == 2

    def test_half_rounds_to_even_up(self):
        # 35 * 0.10 = 3.5
        assert line_commission(35, 1, Decimal("0.10")) == 4

    def test_rounding_on_line_total_not_unit(self):
        # 333 * 3 * 0.15 = 149.85
        assert line_commission(333, 3, Decimal("0.15")) == 150

    def test_zero_rate(self):
        assert line_commission(1_000, 5, Decimal("0")) == 0

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError):
            line_commission(-1, 1, Decimal("0.10"))


class TestSubOrderCommission:
    def test_lines_round_independently(self):
        lines = [(25, 1, Decimal("0.10")), (25, 1, Decimal("0.10"))]
        # Each line rounds 2.5 to 2; rounding the 5.0 total would give 5
        assert sub_order_commission(lines) == 4

    def test_empty(self):
        assert sub_order_commission([]) == 0

    def test_net_payable(self):
        assert net_payable(22_000, 2_100) == 19_900

    def test_net_payable_never_negative(self):
        assert net_payable(100, 150) == 0


class TestRulesValidation:
    def test_standard_rules_are_valid(self):
        _make_rules().validate()

    def test_rate_above_one_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_rules(default_rate="1.5").validate()
        assert "default_rate" in exc_info.value.messages

    def test_negative_category_rate_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_rules(category_rates={"books": "-0.01"}).validate()
        assert "category_rates.books" in exc_info.value.messages

    def test_tier_rates_without_threshold_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_rules(tier_rates={"platinum": "0.02"}, tier_category_rates={}).validate()
        assert "tiers" in exc_info.value.messages

    def test_duplicate_tier_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_rules(tier_thresholds=((100_000, "silver"), (200_000, "silver"), (500_000, "gold"))).validate()
        assert "tier_thresholds" in exc_info.value.messages

    def test_rate_rising_with_tier_rejected(self):
        rules = _make_rules(tier_rates={"silver": "0.08", "gold": "0.09"})
        with pytest.raises(ValidationError) as exc_info:
            rules.validate()
        assert "monotonicity" in exc_info.value.messages

    def test_tier_override_above_category_default_rejected(self):
        rules = _make_rules(tier_category_rates={"silver": {"books": "0.07"}, "gold": {"books": "0.03"}})
        with pytest.raises(ValidationError) as exc_info:
            rules.validate()
        assert "monotonicity" in exc_info.value.messages

    def test_equal_rates_across_tiers_allowed(self):
        _make_rules(tier_rates={"silver": "0.08", "gold": "0.08"}).validate()

    def test_non_numeric_rate_rejected(self):
        with pytest.raises(ValidationError):
            to_rate("abc")

    def test_nan_rate_rejected(self):
        with pytest.raises(ValidationError):
            to_rate("NaN")

    def test_build_accepts_mapping_thresholds(self):
        rules = _make_rules(tier_thresholds=[{"volume": 500_000, "tier": "gold"}, {"volume": 100_000, "tier": "silver"}])
        assert rules.tier_order == ["silver", "gold"]

    def test_build_keeps_seller_rates_exact(self):
        rules = _make_rules(seller_rates={"seller-vip": 0.025})
        assert rules.seller_rates == {"seller-vip": Decimal("0.025")}


class TestSellerRatesValidation:
    def test_seller_override_is_valid(self):
        _make_rules(seller_rates={"seller-vip": "0.02", "seller-new": "0.20"}).validate()

    def test_seller_rate_out_of_range_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_rules(seller_rates={"seller-vip": "1.01"}).validate()
        assert "seller_rates.seller-vip" in exc_info.value.messages

    def test_monotonicity_still_checked_with_seller_rates(self):
        rules = _make_rules(
            tier_rates={"silver": "0.08", "gold": "0.09"},
            seller_rates={"seller-vip": "0.02"},
        )
        with pytest.raises(ValidationError) as exc_info:
            rules.validate()
        assert "monotonicity" in exc_info.value.messages


class TestTiedThresholdsValidation:
    def test_later_tier_may_not_charge_more_than_earlier_tied_tier(self):
        rules = _make_rules(
            tier_rates={"silver": "0.08", "gold": "0.09"},
            tier_thresholds=((100_000, "silver"), (100_000, "gold")),
        )
        with pytest.raises(ValidationError) as exc_info:
            rules.validate()
        assert any("gold" in message for message in exc_info.value.messages["monotonicity"])

    def test_tied_tiers_with_falling_rates_are_valid(self):
        _make_rules(
            tier_rates={"silver": "0.08", "gold": "0.06"},
            tier_thresholds=((100_000, "silver"), (100_000, "gold")),
        ).validate()

    def test_reversed_declaration_reverses_the_ladder(self):
        rules = _make_rules(
            tier_rates={"silver": "0.08", "gold": "0.06"},
            tier_thresholds=((100_000, "gold"), (100_000, "silver")),
        )
        assert rules.tier_order == ["gold", "silver"]
        with pytest.raises(ValidationError) as exc_info:
            rules.validate()
        assert "monotonicity" in exc_info.value.messages
