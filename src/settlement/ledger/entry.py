"""LedgerEntry: one append-only line of a seller's earnings.

Amounts are always positive; the kind decides the sign:
    credit    +amount  net payable of a sub-order at payment
    reversal  -amount  net value of refunded units
    debit     -amount  outstanding credit of a sub-order cancelled after payment

Entries are written once: the repository refuses to save an entry that has
already been persisted.
"""

from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String

from settlement.domain import settlement
from settlement.exceptions import LedgerIntegrityError


class EntryKind(Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    REVERSAL = "reversal"


_SIGN = {
    EntryKind.CREDIT: 1,
    EntryKind.DEBIT: -1,
    EntryKind.REVERSAL: -1,
}


@settlement.aggregate
class LedgerEntry:
    seller_id = Identifier(required=True)
    order_id = Identifier(required=True)
    sub_order_id = Identifier(required=True)
    kind = String(choices=EntryKind, required=True)
    amount = Integer(required=True)
    reference = String(required=True, max_length=160)
    created_at = DateTime(required=True)
    available_at = DateTime(required=True)

    @classmethod
    def record(cls, kind: EntryKind, seller_id, order_id, sub_order_id, amount, reference, created_at, available_at):
        if amount < 0:
            raise LedgerIntegrityError(
                f"Ledger amounts are positive; got {amount} for a {kind.value}",
                sub_order_id=sub_order_id,
                kind=kind.value,
            )
        return cls(
            seller_id=seller_id,
            order_id=order_id,
            sub_order_id=sub_order_id,
            kind=kind.value,
            amount=amount,
            reference=reference,
            created_at=created_at,
            available_at=available_at,
        )

    @property
    def entry_kind(self) -> EntryKind:
        return EntryKind(self.kind)

    @property
    def signed_amount(self) -> int:
        return _SIGN[self.entry_kind] * self.amount


@settlement.repository(part_of=LedgerEntry)
class LedgerEntryRepository:
    """Append-only access to ledger entries."""

    def add(self, item: LedgerEntry) -> LedgerEntry:
        if item.state_.is_persisted:
            raise LedgerIntegrityError("Ledger entries are append-only", entry_id=item.id)
        return super().add(item)

    def for_sub_order(self, sub_order_id) -> list[LedgerEntry]:
        return list(self.query.filter(sub_order_id=sub_order_id).order_by("created_at").limit(None).all().items)

    def for_seller(self, seller_id, start=None, end=None) -> list[LedgerEntry]:
        """Seller entries with ``start <= created_at < end``, oldest first."""
        query = self.query.filter(seller_id=seller_id)
        if start is not None:
            query = query.filter(created_at__gte=start)
        if end is not None:
            query = query.filter(created_at__lt=end)
        return list(query.order_by("created_at").limit(None).all().items)
