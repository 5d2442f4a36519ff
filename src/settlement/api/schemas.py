"""Pydantic request/response schemas for the Settlement API.

These are external contracts (anti-corruption layer), separate from the
internal command dataclasses. Money is always an integer count of minor
units; rates travel as decimal strings.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutLineSchema(BaseModel):
    variant_id: str
    quantity: int = Field(ge=1)


class CheckoutRequest(BaseModel):
    buyer_id: str = Field(min_length=1)
    payment_ref: str = Field(min_length=1)
    lines: list[CheckoutLineSchema] = Field(min_length=1)


class LineResponse(BaseModel):
    line_id: str
    variant_id: str
    category_id: str | None = None
    quantity: int
    refunded_quantity: int = 0
    unit_price: int
    commission_rate: str
    commission_amount: int


class SubOrderResponse(BaseModel):
    sub_order_id: str
    order_id: str | None = None
    seller_id: str
    status: str
    seller_tier: str | None = None
    rule_set_version: int | None = None
    total_amount: int
    commission_amount: int
    net_payable: int
    paid_at: datetime | None = None
    lines: list[LineResponse]


class OrderResponse(BaseModel):
    order_id: str
    buyer_id: str | None = None
    payment_ref: str | None = None
    currency: str
    status: str
    total_amount: int
    sub_orders: list[SubOrderResponse]
    replayed: bool = False


# ---------------------------------------------------------------------------
# Payment & refund webhooks
# ---------------------------------------------------------------------------
class PaymentConfirmedRequest(BaseModel):
    order_id: str
    payment_ref: str
    captured_amount: int = Field(ge=0)


class PaymentConfirmedResponse(BaseModel):
    order_id: str
    payment_ref: str
    status: str
    captured_amount: int
    paid_sub_order_ids: list[str]
    replayed: bool = False


class RefundLineSchema(BaseModel):
    variant_id: str
    quantity: int = Field(ge=1)
    line_id: str | None = None


class RefundRequest(BaseModel):
    sub_order_id: str
    refund_ref: str = Field(min_length=1)
    lines: list[RefundLineSchema] = Field(default_factory=list)
    amount: int | None = Field(default=None, ge=0)
    reason: str | None = None


class RefundResponse(BaseModel):
    sub_order_id: str
    order_id: str
    refund_ref: str
    status: str
    refunded_amount: int
    reversed_commission: int
    reversal_amount: int
    remaining_total: int
    replayed: bool = False


class CancelRequest(BaseModel):
    reason: str | None = None
    cancelled_by: str | None = None


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class RegisterStockRequest(BaseModel):
    variant_id: str
    on_hand: int = Field(ge=0)
    low_stock_threshold: int | None = Field(default=None, ge=0)


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(ge=1)


class UpdateThresholdRequest(BaseModel):
    low_stock_threshold: int = Field(ge=0)


class StockResponse(BaseModel):
    variant_id: str
    on_hand: int
    held: int
    committed: int
    available: int
    low_stock_threshold: int
    is_low_stock: bool = False


class StockListResponse(BaseModel):
    items: list[StockResponse]


# ---------------------------------------------------------------------------
# Commission rules
# ---------------------------------------------------------------------------
class TierThresholdSchema(BaseModel):
    volume: int = Field(ge=0)
    tier: str = Field(min_length=1)


class PublishRulesRequest(BaseModel):
    default_rate: Decimal
    category_rates: dict[str, Decimal] = Field(default_factory=dict)
    tier_rates: dict[str, Decimal] = Field(default_factory=dict)
    tier_category_rates: dict[str, dict[str, Decimal]] = Field(default_factory=dict)
    tier_thresholds: list[TierThresholdSchema] = Field(default_factory=list)
    seller_rates: dict[str, Decimal] = Field(default_factory=dict)
    published_by: str | None = None


class RulesResponse(BaseModel):
    version: int
    default_rate: str
    category_rates: dict[str, str]
    tier_rates: dict[str, str]
    tier_category_rates: dict[str, dict[str, str]]
    tier_thresholds: list[TierThresholdSchema]
    seller_rates: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Ledger reporting
# ---------------------------------------------------------------------------
class BalanceResponse(BaseModel):
    seller_id: str
    total: int
    available: int
    pending: int
    as_of: datetime


class LedgerEntryResponse(BaseModel):
    entry_id: str
    order_id: str
    sub_order_id: str
    kind: str
    amount: int
    signed_amount: int
    reference: str
    created_at: datetime
    available_at: datetime


class LedgerStatementResponse(BaseModel):
    seller_id: str
    entries: list[LedgerEntryResponse]
