"""EarningsLedger: posts and checks seller earnings inside a unit of work.

Postings happen in the same transaction as the sub-order transition that
causes them, and ``verify`` runs before that transaction commits: a
sub-order that reached ``paid`` has exactly one credit, and its outstanding
credit (credit − reversals − debits) matches what the seller is still owed.

Credits only become *available* once the earnings holding period
(``earnings_holding_days``) has passed. Reversals and debits become
available no earlier than the credit they offset, so refunding a
still-pending sale reduces pending earnings rather than available ones.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from settlement.exceptions import LedgerIntegrityError
from settlement.ledger.entry import EntryKind, LedgerEntry
from settlement.ordering.status import SubOrderStatus
from settlement.utils.clock import as_utc

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SellerBalance:
    seller_id: str
    total: int
    available: int
    pending: int
    as_of: datetime


class EarningsLedger:
    def __init__(self, holding_days: int | None = None):
        if holding_days is None:
            holding_days = current_domain.earnings_holding_days
        self.holding_period = timedelta(days=holding_days)

    @property
    def repository(self):
        return current_domain.repository_for(LedgerEntry)

    # -------------------------------------------------------------------
    # Posting
    # -------------------------------------------------------------------
    def _post(self, kind, sub_order, amount, reference, now, available_at):
        entry = LedgerEntry.record(
            kind,
            seller_id=sub_order.seller_id,
            order_id=sub_order.order_id,
            sub_order_id=sub_order.id,
            amount=amount,
            reference=reference,
            created_at=now,
            available_at=available_at,
        )
        self.repository.add(entry)
        logger.info(
            "Ledger entry posted",
            kind=kind.value,
            seller_id=sub_order.seller_id,
            sub_order_id=sub_order.id,
            amount=amount,
            reference=reference,
        )
        return entry

    def _credit_of(self, sub_order_id) -> LedgerEntry | None:
        credits = [e for e in self.entries_for_sub_order(sub_order_id) if e.entry_kind == EntryKind.CREDIT]
        if len(credits) > 1:
            raise LedgerIntegrityError("Sub-order has more than one credit", sub_order_id=sub_order_id)
        return credits[0] if credits else None

    def post_credit(self, sub_order, reference, now=None) -> LedgerEntry:
        """Credit the seller with the sub-order's net payable."""
        if self._credit_of(sub_order.id) is not None:
            raise LedgerIntegrityError("Sub-order was already credited", sub_order_id=sub_order.id)

        now = now or datetime.now(UTC)
        return self._post(
            EntryKind.CREDIT,
            sub_order,
            sub_order.net_payable,
            reference,
            now,
            available_at=now + self.holding_period,
        )

    def _offset(self, kind, sub_order, amount, reference, now):
        credit = self._credit_of(sub_order.id)
        if credit is None:
            raise LedgerIntegrityError(
                f"Cannot post a {kind.value} against a sub-order that was never credited",
                sub_order_id=sub_order.id,
            )
        now = now or datetime.now(UTC)
        return self._post(kind, sub_order, amount, reference, now, available_at=max(now, as_utc(credit.available_at)))

    def post_reversal(self, sub_order, amount, reference, now=None) -> LedgerEntry:
        return self._offset(EntryKind.REVERSAL, sub_order, amount, reference, now)

    def post_debit(self, sub_order, reference, now=None) -> LedgerEntry:
        """Debit whatever is still outstanding for the sub-order."""
        return self._offset(EntryKind.DEBIT, sub_order, self.outstanding(sub_order.id), reference, now)

    # -------------------------------------------------------------------
    # Integrity
    # -------------------------------------------------------------------
    def entries_for_sub_order(self, sub_order_id) -> list[LedgerEntry]:
        return self.repository.for_sub_order(sub_order_id)

    def outstanding(self, sub_order_id) -> int:
        return sum(entry.signed_amount for entry in self.entries_for_sub_order(sub_order_id))

    def verify(self, sub_order) -> None:
        """Check the sub-order's entries agree with its status and net payable."""
        entries = self.entries_for_sub_order(sub_order.id)
        credits = [e for e in entries if e.entry_kind == EntryKind.CREDIT]
        status = sub_order.current_status

        never_paid = status == SubOrderStatus.PENDING_PAYMENT or (
            status == SubOrderStatus.CANCELLED and sub_order.paid_at is None
        )
        if never_paid:
            if entries:
                raise LedgerIntegrityError(
                    "Unpaid sub-order has ledger entries",
                    sub_order_id=sub_order.id,
                    status=status.value,
                )
            return

        if len(credits) != 1:
            raise LedgerIntegrityError(
                f"Paid sub-order must have exactly one credit, found {len(credits)}",
                sub_order_id=sub_order.id,
            )

        outstanding = sum(entry.signed_amount for entry in entries)
        expected = 0 if status in (SubOrderStatus.REFUNDED, SubOrderStatus.CANCELLED) else sub_order.net_payable
        if outstanding != expected:
            logger.error(
                "Ledger out of balance",
                sub_order_id=sub_order.id,
                status=status.value,
                outstanding=outstanding,
                expected=expected,
            )
            raise LedgerIntegrityError(
                "Outstanding credit does not match net payable",
                sub_order_id=sub_order.id,
                outstanding=outstanding,
                expected=expected,
            )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def entries(self, seller_id, start: datetime | None = None, end: datetime | None = None) -> list[LedgerEntry]:
        """Seller entries with ``start <= created_at < end``, oldest first."""
        return self.repository.for_seller(seller_id, as_utc(start), as_utc(end))

    def balance(self, seller_id, as_of: datetime | None = None) -> SellerBalance:
        as_of = as_utc(as_of) or datetime.now(UTC)
        entries = [e for e in self.entries(seller_id) if as_utc(e.created_at) <= as_of]

        total = sum(e.signed_amount for e in entries)
        available = sum(e.signed_amount for e in entries if as_utc(e.available_at) <= as_of)
        return SellerBalance(
            seller_id=seller_id,
            total=total,
            available=available,
            pending=total - available,
            as_of=as_of,
        )
