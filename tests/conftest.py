import json
import os
from pathlib import Path
from uuid import uuid4

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    PROTEAN_ENV must be set before the settlement domain is imported, because
    the domain reads ``domain.toml`` and its overlay when it is constructed.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def settlement_bed():
    from settlement.domain import settlement

    bed = DomainFixture(settlement)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(settlement_bed):
    """Run every test inside the domain context; stores are reset on exit."""
    from settlement.catalogue import reset_catalogue
    from settlement.notifications import reset_publisher

    with settlement_bed.domain_context():
        yield

    reset_catalogue()
    reset_publisher()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture()
def publisher():
    from settlement.notifications import set_publisher
    from settlement.notifications.adapters import RecordingPublisher

    recording = RecordingPublisher()
    set_publisher(recording)
    return recording


@pytest.fixture()
def catalogue():
    """Three sellers: electronics from seller-a, books from seller-b,
    uncategorised stationery from seller-c."""
    from settlement.catalogue import set_catalogue
    from settlement.catalogue.fake_adapter import InMemoryCatalogue

    fake = InMemoryCatalogue()
    fake.add_variant("phone-1", "seller-a", unit_price=10000, category_id="electronics", on_hand=10)
    fake.add_variant("charger-1", "seller-a", unit_price=1000, category_id="electronics", on_hand=20)
    fake.add_variant("case-1", "seller-a", unit_price=1500, category_id="electronics", on_hand=20)
    fake.add_variant("book-1", "seller-b", unit_price=2000, category_id="books", on_hand=5)
    fake.add_variant("pen-1", "seller-c", unit_price=333, category_id=None, on_hand=10)
    set_catalogue(fake)
    return fake


# ---------------------------------------------------------------------------
# Commission rules
# ---------------------------------------------------------------------------
STANDARD_RULES = {
    "default_rate": "0.15",
    "category_rates": {"electronics": "0.10", "books": "0.05"},
    "tier_rates": {"silver": "0.08", "gold": "0.06"},
    "tier_category_rates": {"silver": {"books": "0.04"}, "gold": {"books": "0.03"}},
    "tier_thresholds": [{"volume": 100_000, "tier": "silver"}, {"volume": 500_000, "tier": "gold"}],
}


def publish_rules(default_rate, published_by=None, **rates):
    """Publish a rule set; rate tables are passed as plain dicts and lists."""
    from protean.utils.globals import current_domain
    from settlement.commission.management import PublishCommissionRules

    command = PublishCommissionRules(
        default_rate=str(default_rate),
        published_by=published_by,
        **{name: json.dumps(value) for name, value in rates.items()},
    )
    return current_domain.process(command, asynchronous=False)


@pytest.fixture()
def rules():
    return publish_rules(**STANDARD_RULES)


# ---------------------------------------------------------------------------
# Order helpers
# ---------------------------------------------------------------------------
def place_checkout(*lines, buyer_id="buyer-001", payment_ref=None):
    from protean.utils.globals import current_domain
    from settlement.ordering.checkout import PlaceCheckout

    command = PlaceCheckout(
        buyer_id=buyer_id,
        payment_ref=payment_ref or f"pay-{uuid4().hex[:12]}",
        lines=json.dumps([{"variant_id": variant_id, "quantity": quantity} for variant_id, quantity in lines]),
    )
    return current_domain.process(command, asynchronous=False)


def confirm_payment(order_id, captured_amount=None, payment_ref=None):
    """Confirm payment of everything still payable on an order."""
    from protean.utils.globals import current_domain
    from settlement.ordering.payment import ConfirmPayment
    from settlement.ordering.queries import get_order

    order = get_order(order_id)
    if captured_amount is None:
        captured_amount = sum(s.total_amount for s in order.sub_orders if s.status == "pending_payment")
    command = ConfirmPayment(
        order_id=order.id,
        payment_ref=payment_ref or order.payment_ref,
        captured_amount=captured_amount,
    )
    return current_domain.process(command, asynchronous=False)


@pytest.fixture()
def checkout(catalogue, rules):
    """Place a checkout from ``(variant_id, quantity)`` pairs."""
    return place_checkout


@pytest.fixture()
def pay():
    return confirm_payment


@pytest.fixture()
def paid_order(checkout, pay):
    """Place and pay a checkout in one step; returns the checkout result."""

    def _paid_order(*lines, **kwargs):
        result = checkout(*lines, **kwargs)
        pay(result.order_id)
        return result

    return _paid_order


@pytest.fixture()
def publish():
    return publish_rules
