"""Read-only ledger reporting: seller balances and statements."""

from datetime import datetime

from settlement.ledger.entry import LedgerEntry
from settlement.ledger.ledger import EarningsLedger, SellerBalance


def get_balance(seller_id: str, as_of: datetime | None = None) -> SellerBalance:
    return EarningsLedger().balance(seller_id, as_of)


def get_entries(seller_id: str, start: datetime | None = None, end: datetime | None = None) -> list[LedgerEntry]:
    return EarningsLedger().entries(seller_id, start, end)
