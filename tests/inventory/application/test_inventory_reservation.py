"""Application tests for stock registration, holds and hold expiry."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain
from settlement.exceptions import InsufficientStock
from settlement.inventory.registration import ReceiveStock, RegisterStock, get_stock
from settlement.inventory.reservation import (
    CommitHolds,
    InventoryReservation,
    ReleaseHolds,
    ReserveStock,
    expired_holds,
)
from settlement.inventory.stock import HoldStatus


def _register(variant_id="var-001", on_hand=5, low_stock_threshold=None):
    command = RegisterStock(variant_id=variant_id, on_hand=on_hand, low_stock_threshold=low_stock_threshold)
    return current_domain.process(command, asynchronous=False)


def _reserve(quantity, hold_token, variant_id="var-001", expires_at=None):
    command = ReserveStock(variant_id=variant_id, quantity=quantity, hold_token=hold_token, expires_at=expires_at)
    return current_domain.process(command, asynchronous=False)


def _commit(hold_token):
    return current_domain.process(CommitHolds(hold_token=hold_token), asynchronous=False)


def _release(hold_token, reason="released"):
    return current_domain.process(ReleaseHolds(hold_token=hold_token, reason=reason), asynchronous=False)


class TestRegisterStock:
    def test_register_persists_stock(self):
        _register(on_hand=5)

        stock = get_stock("var-001")
        assert stock.on_hand == 5
        assert stock.available == 5

    def test_register_uses_configured_threshold_by_default(self):
        _register()
        assert get_stock("var-001").low_stock_threshold == current_domain.default_low_stock_threshold

    def test_register_twice_fails(self):
        _register()
        with pytest.raises(ValidationError) as exc_info:
            _register()
        assert "variant_id" in exc_info.value.messages

    def test_get_unknown_stock_raises_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            get_stock("missing")

    def test_receive_stock(self, publisher):
        _register(on_hand=5)
        current_domain.process(ReceiveStock(variant_id="var-001", quantity=10), asynchronous=False)

        assert get_stock("var-001").on_hand == 15
        (event,) = publisher.of_type("StockReceived")
        assert event.new_on_hand == 15


class TestReserve:
    def test_reserve_holds_stock(self):
        _register(on_hand=5)
        _reserve(3, "sub-1")

        stock = get_stock("var-001")
        assert stock.held == 3
        assert stock.available == 2

    def test_reserve_defaults_expiry_to_hold_ttl(self):
        _register(on_hand=5)
        before = datetime.now(UTC)
        hold = _reserve(1, "sub-1")

        ttl = timedelta(minutes=current_domain.hold_ttl_minutes)
        assert before + ttl <= hold.expires_at <= datetime.now(UTC) + ttl

    def test_reserve_unknown_variant_raises_not_found(self):
        with pytest.raises(ObjectNotFoundError):
            _reserve(1, "sub-1", variant_id="missing")

    def test_exhausted_stock_becomes_available_after_release(self):
        _register(on_hand=5)
        _reserve(5, "sub-1")

        with pytest.raises(InsufficientStock):
            _reserve(1, "sub-2")

        _release("sub-1")
        _reserve(1, "sub-2")

        stock = get_stock("var-001")
        assert stock.held == 1
        assert stock.available == 4

    def test_failed_reserve_leaves_stock_untouched(self):
        _register(on_hand=2)
        with pytest.raises(InsufficientStock):
            _reserve(3, "sub-1")

        stock = get_stock("var-001")
        assert stock.held == 0
        assert stock.available == 2

    def test_low_stock_event_published_after_commit(self, publisher):
        _register(on_hand=12, low_stock_threshold=10)
        _reserve(2, "sub-1")

        (event,) = publisher.of_type("LowStockDetected")
        assert event.variant_id == "var-001"
        assert event.available == 10
        assert event.threshold == 10

    def test_low_stock_published_once_while_below_threshold(self, publisher):
        _register(on_hand=12, low_stock_threshold=10)
        _reserve(3, "sub-1")
        _reserve(1, "sub-2")
        _reserve(1, "sub-3")

        assert [e.available for e in publisher.of_type("LowStockDetected")] == [9]

    def test_low_stock_published_again_after_stock_recovers(self, publisher):
        _register(on_hand=12, low_stock_threshold=10)
        _reserve(3, "sub-1")
        _release("sub-1")
        _reserve(3, "sub-2")

        assert len(publisher.of_type("LowStockDetected")) == 2


class TestCommitAndRelease:
    def test_commit_holds_by_token(self):
        _register("var-001", on_hand=5)
        _register("var-002", on_hand=5)
        _reserve(2, "sub-1", variant_id="var-001")
        _reserve(1, "sub-1", variant_id="var-002")

        committed = _commit("sub-1")

        assert len(committed) == 2
        assert get_stock("var-001").committed == 2
        assert get_stock("var-002").committed == 1
        assert get_stock("var-001").held == 0

    def test_commit_is_idempotent(self):
        _register(on_hand=5)
        _reserve(2, "sub-1")
        _commit("sub-1")

        assert _commit("sub-1") == []
        assert get_stock("var-001").committed == 2

    def test_release_after_commit_changes_nothing(self):
        _register(on_hand=5)
        _reserve(2, "sub-1")
        _commit("sub-1")

        assert _release("sub-1") == []
        stock = get_stock("var-001")
        assert stock.committed == 2
        assert stock.available == 3

    def test_release_unknown_token_is_a_no_op(self):
        assert _release("nothing") == []

    def test_holds_for_filters_by_status(self):
        _register(on_hand=5)
        _reserve(1, "sub-1")
        _reserve(1, "sub-1")
        _release("sub-1")

        reservation = InventoryReservation(scope=None)
        assert len(reservation.holds_for("sub-1")) == 2
        assert reservation.holds_for("sub-1", HoldStatus.ACTIVE) == []
        assert len(reservation.holds_for("sub-1", HoldStatus.RELEASED)) == 2


class TestExpiredHolds:
    def test_expired_holds_lists_only_active_past_expiry(self):
        _register(on_hand=10)
        now = datetime.now(UTC)
        _reserve(1, "old", expires_at=now - timedelta(minutes=1))
        _reserve(1, "fresh", expires_at=now + timedelta(minutes=10))
        _reserve(1, "gone", expires_at=now - timedelta(minutes=5))
        _release("gone")

        expired = expired_holds(now)

        assert [hold.hold_token for hold in expired] == ["old"]
        assert InventoryReservation.is_expired(expired[0], now) is True

    def test_expired_hold_can_be_released(self):
        _register(on_hand=3)
        _reserve(3, "sub-1", expires_at=datetime.now(UTC) - timedelta(seconds=1))

        for hold in expired_holds():
            _release(hold.hold_token, reason="expired")

        assert get_stock("var-001").available == 3
