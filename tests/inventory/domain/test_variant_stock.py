"""Tests for the VariantStock aggregate: holds, commits, releases and restocks."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError
from settlement.exceptions import InsufficientStock
from settlement.inventory.events import LowStockDetected, StockReceived
from settlement.inventory.stock import HoldStatus, VariantStock


def _make_stock(**overrides):
    defaults = {
        "variant_id": "var-001",
        "on_hand": 100,
        "low_stock_threshold": 10,
    }
    defaults.update(overrides)
    return VariantStock.register(**defaults)


def _expiry(minutes=15):
    return datetime.now(UTC) + timedelta(minutes=minutes)


def _assert_balanced(stock):
    assert stock.available + stock.held + stock.committed == stock.on_hand
    assert stock.available >= 0


class TestRegisterStock:
    def test_register_sets_levels(self):
        stock = _make_stock(on_hand=50)
        assert stock.on_hand == 50
        assert stock.held == 0
        assert stock.committed == 0
        assert stock.available == 50

    def test_register_rejects_negative_on_hand(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_stock(on_hand=-1)
        assert "on_hand" in exc_info.value.messages

    def test_register_rejects_negative_threshold(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_stock(low_stock_threshold=-1)
        assert "low_stock_threshold" in exc_info.value.messages


class TestHold:
    def test_hold_decreases_available(self):
        stock = _make_stock(on_hand=100)
        stock.hold(20, "token-1", expires_at=_expiry())
        assert stock.available == 80
        assert stock.held == 20
        _assert_balanced(stock)

    def test_hold_returns_active_hold(self):
        stock = _make_stock()
        hold = stock.hold(5, "token-1", expires_at=_expiry())
        assert hold.hold_token == "token-1"
        assert hold.variant_id == "var-001"
        assert hold.quantity == 5
        assert hold.status == HoldStatus.ACTIVE.value

    def test_hold_exact_available_quantity(self):
        stock = _make_stock(on_hand=5)
        stock.hold(5, "token-1", expires_at=_expiry())
        assert stock.available == 0
        _assert_balanced(stock)

    def test_hold_fails_when_insufficient(self):
        stock = _make_stock(on_hand=5)
        stock.hold(5, "token-1", expires_at=_expiry())

        with pytest.raises(InsufficientStock) as exc_info:
            stock.hold(1, "token-2", expires_at=_expiry())

        assert exc_info.value.context == {"variant_id": "var-001", "requested": 1, "available": 0}
        assert stock.held == 5

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_hold_rejects_non_positive_quantity(self, quantity):
        stock = _make_stock()
        with pytest.raises(ValidationError) as exc_info:
            stock.hold(quantity, "token-1", expires_at=_expiry())
        assert "quantity" in exc_info.value.messages

    def test_hold_raises_low_stock_at_threshold(self):
        stock = _make_stock(on_hand=15, low_stock_threshold=10)
        stock.hold(5, "token-1", expires_at=_expiry())

        low_stock = [e for e in stock._events if isinstance(e, LowStockDetected)]
        assert len(low_stock) == 1
        assert low_stock[0].available == 10
        assert low_stock[0].threshold == 10

    def test_hold_above_threshold_raises_nothing(self):
        stock = _make_stock(on_hand=100, low_stock_threshold=10)
        stock.hold(5, "token-1", expires_at=_expiry())
        assert stock._events == []

    def test_low_stock_raised_only_when_crossing_threshold(self):
        stock = _make_stock(on_hand=15, low_stock_threshold=10)
        stock.hold(6, "token-1", expires_at=_expiry())
        stock.hold(2, "token-2", expires_at=_expiry())
        stock.hold(1, "token-3", expires_at=_expiry())

        low_stock = [e for e in stock._events if isinstance(e, LowStockDetected)]
        assert [e.available for e in low_stock] == [9]

    def test_stock_registered_below_threshold_raises_nothing_on_hold(self):
        stock = _make_stock(on_hand=8, low_stock_threshold=10)
        stock.hold(1, "token-1", expires_at=_expiry())
        assert stock._events == []

    def test_low_stock_raised_again_after_recovering(self):
        stock = _make_stock(on_hand=12, low_stock_threshold=10)
        first = stock.hold(3, "token-1", expires_at=_expiry())
        stock.release(first)
        stock.hold(3, "token-2", expires_at=_expiry())

        low_stock = [e for e in stock._events if isinstance(e, LowStockDetected)]
        assert len(low_stock) == 2


class TestCommitAndRelease:
    def test_commit_moves_held_to_committed(self):
        stock = _make_stock(on_hand=10)
        hold = stock.hold(4, "token-1", expires_at=_expiry())

        assert stock.commit(hold) is True
        assert stock.held == 0
        assert stock.committed == 4
        assert stock.available == 6
        assert hold.status == HoldStatus.COMMITTED.value
        _assert_balanced(stock)

    def test_commit_twice_is_a_no_op(self):
        stock = _make_stock(on_hand=10)
        hold = stock.hold(4, "token-1", expires_at=_expiry())
        stock.commit(hold)

        assert stock.commit(hold) is False
        assert stock.committed == 4

    def test_release_returns_stock(self):
        stock = _make_stock(on_hand=10)
        hold = stock.hold(4, "token-1", expires_at=_expiry())

        assert stock.release(hold) is True
        assert stock.held == 0
        assert stock.available == 10
        assert hold.status == HoldStatus.RELEASED.value

    def test_release_committed_hold_is_ignored(self):
        stock = _make_stock(on_hand=10)
        hold = stock.hold(4, "token-1", expires_at=_expiry())
        stock.commit(hold)

        assert stock.release(hold) is False
        assert stock.committed == 4
        _assert_balanced(stock)

    def test_hold_for_other_variant_is_rejected(self):
        stock = _make_stock(variant_id="var-001")
        other = _make_stock(variant_id="var-002")
        hold = other.hold(1, "token-1", expires_at=_expiry())

        with pytest.raises(ValidationError):
            stock.commit(hold)


class TestExpiry:
    def test_active_hold_past_expiry_is_expired(self):
        stock = _make_stock()
        hold = stock.hold(1, "token-1", expires_at=_expiry(minutes=15))
        assert hold.is_expired(datetime.now(UTC) + timedelta(minutes=16)) is True

    def test_active_hold_before_expiry_is_not_expired(self):
        stock = _make_stock()
        hold = stock.hold(1, "token-1", expires_at=_expiry(minutes=15))
        assert hold.is_expired(datetime.now(UTC)) is False

    def test_closed_hold_never_expires(self):
        stock = _make_stock()
        hold = stock.hold(1, "token-1", expires_at=_expiry(minutes=15))
        stock.commit(hold)
        assert hold.is_expired(datetime.now(UTC) + timedelta(days=1)) is False


class TestStockMovements:
    def test_restock_returns_committed_units(self):
        stock = _make_stock(on_hand=10)
        stock.commit(stock.hold(4, "token-1", expires_at=_expiry()))

        stock.restock(3)
        assert stock.committed == 1
        assert stock.available == 9
        _assert_balanced(stock)

    def test_restock_more_than_committed_fails(self):
        stock = _make_stock(on_hand=10)
        stock.commit(stock.hold(2, "token-1", expires_at=_expiry()))

        with pytest.raises(ValidationError) as exc_info:
            stock.restock(3)
        assert "quantity" in exc_info.value.messages

    def test_receive_increases_on_hand(self):
        stock = _make_stock(on_hand=10)
        stock.receive(5)
        assert stock.on_hand == 15
        assert stock.available == 15

    def test_receive_raises_stock_received_event(self):
        stock = _make_stock(on_hand=10)
        stock.receive(5)

        event = stock._events[-1]
        assert isinstance(event, StockReceived)
        assert event.new_on_hand == 15
        assert event.new_available == 15

    def test_receive_rejects_zero(self):
        stock = _make_stock()
        with pytest.raises(ValidationError):
            stock.receive(0)


class TestLowStockThreshold:
    def test_is_low_stock_at_threshold(self):
        stock = _make_stock(on_hand=10, low_stock_threshold=10)
        assert stock.is_low_stock is True

    def test_is_not_low_stock_above_threshold(self):
        stock = _make_stock(on_hand=11, low_stock_threshold=10)
        assert stock.is_low_stock is False

    def test_update_threshold(self):
        stock = _make_stock(on_hand=20, low_stock_threshold=10)
        stock.update_low_stock_threshold(25)
        assert stock.low_stock_threshold == 25
        assert stock.is_low_stock is True

    def test_update_threshold_rejects_negative(self):
        stock = _make_stock()
        with pytest.raises(ValidationError) as exc_info:
            stock.update_low_stock_threshold(-1)
        assert "low_stock_threshold" in exc_info.value.messages
