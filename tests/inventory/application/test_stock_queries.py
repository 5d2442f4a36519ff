"""Low-stock and out-of-stock lookups, and threshold updates."""

import pytest
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain
from settlement.inventory.registration import (
    RegisterStock,
    UpdateLowStockThreshold,
    get_stock,
    low_stock,
    out_of_stock,
)
from settlement.inventory.reservation import ReserveStock


def _register(variant_id, on_hand, low_stock_threshold=5):
    command = RegisterStock(variant_id=variant_id, on_hand=on_hand, low_stock_threshold=low_stock_threshold)
    return current_domain.process(command, asynchronous=False)


def _reserve(variant_id, quantity, hold_token):
    command = ReserveStock(variant_id=variant_id, quantity=quantity, hold_token=hold_token)
    return current_domain.process(command, asynchronous=False)


def _update_threshold(variant_id, threshold):
    command = UpdateLowStockThreshold(variant_id=variant_id, low_stock_threshold=threshold)
    return current_domain.process(command, asynchronous=False)


@pytest.fixture()
def stocks():
    _register("plenty", on_hand=50)
    _register("scarce", on_hand=4)
    _register("edge", on_hand=5)
    _register("sold-out", on_hand=3)
    _reserve("sold-out", 3, "sub-1")


class TestLowStock:
    def test_lists_variants_at_or_below_threshold(self, stocks):
        assert [stock.variant_id for stock in low_stock()] == ["sold-out", "scarce", "edge"]

    def test_held_units_count_against_availability(self, stocks):
        _reserve("plenty", 45, "sub-2")
        assert "plenty" in [stock.variant_id for stock in low_stock()]

    def test_empty_without_stock(self):
        assert low_stock() == []


class TestOutOfStock:
    def test_lists_only_variants_with_nothing_available(self, stocks):
        assert [stock.variant_id for stock in out_of_stock()] == ["sold-out"]

    def test_fully_held_variant_is_out_of_stock(self, stocks):
        _reserve("scarce", 4, "sub-2")
        assert sorted(stock.variant_id for stock in out_of_stock()) == ["scarce", "sold-out"]


class TestUpdateLowStockThreshold:
    def test_threshold_is_persisted(self, stocks):
        stock = _update_threshold("plenty", 60)

        assert stock.low_stock_threshold == 60
        assert get_stock("plenty").low_stock_threshold == 60
        assert "plenty" in [s.variant_id for s in low_stock()]

    def test_lowering_threshold_clears_low_stock(self, stocks):
        _update_threshold("scarce", 1)
        assert "scarce" not in [s.variant_id for s in low_stock()]

    def test_stock_levels_are_unchanged(self, stocks):
        stock = _update_threshold("scarce", 2)
        assert (stock.on_hand, stock.held, stock.available) == (4, 0, 4)

    def test_negative_threshold_is_rejected(self, stocks):
        with pytest.raises(ValidationError) as exc_info:
            _update_threshold("plenty", -1)
        assert "low_stock_threshold" in exc_info.value.messages
        assert get_stock("plenty").low_stock_threshold == 5

    def test_unknown_variant(self):
        with pytest.raises(ObjectNotFoundError):
            _update_threshold("missing", 3)
