"""FastAPI routes for the Settlement domain.

Writes go through ``current_domain.process`` and run synchronously so the
response can carry the handler's result. Reads call the query functions of
each module directly.
"""

import json
from datetime import datetime

from fastapi import APIRouter
from protean.utils.globals import current_domain

from settlement.api.schemas import (
    BalanceResponse,
    CancelRequest,
    CheckoutRequest,
    LedgerEntryResponse,
    LedgerStatementResponse,
    LineResponse,
    OrderResponse,
    PaymentConfirmedRequest,
    PaymentConfirmedResponse,
    PublishRulesRequest,
    ReceiveStockRequest,
    RefundRequest,
    RefundResponse,
    RegisterStockRequest,
    RulesResponse,
    StockListResponse,
    StockResponse,
    SubOrderResponse,
    TierThresholdSchema,
    UpdateThresholdRequest,
)
from settlement.commission.management import PublishCommissionRules, get_active_rules, get_rules
from settlement.inventory.registration import (
    ReceiveStock,
    RegisterStock,
    UpdateLowStockThreshold,
    get_stock,
    low_stock,
    out_of_stock,
)
from settlement.ledger.statement import get_balance, get_entries
from settlement.ordering.cancellation import CancelOrder, CancelSubOrder
from settlement.ordering.checkout import PlaceCheckout
from settlement.ordering.fulfilment import FulfilSubOrder
from settlement.ordering.payment import ConfirmPayment
from settlement.ordering.queries import get_order, get_sub_order
from settlement.refunds.refund import ProcessRefund


def _rates(rates) -> dict[str, str]:
    return {key: str(value) for key, value in rates.items()}


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------
def _sub_order_response(sub_order) -> SubOrderResponse:
    return SubOrderResponse(
        sub_order_id=sub_order.id,
        order_id=sub_order.order_id,
        seller_id=sub_order.seller_id,
        status=sub_order.status,
        seller_tier=sub_order.seller_tier,
        rule_set_version=sub_order.rule_set_version,
        total_amount=sub_order.total_amount,
        commission_amount=sub_order.commission_amount,
        net_payable=sub_order.net_payable,
        paid_at=sub_order.paid_at,
        lines=[
            LineResponse(
                line_id=line.id,
                variant_id=line.variant_id,
                category_id=line.category_id,
                quantity=line.quantity,
                refunded_quantity=line.refunded_quantity,
                unit_price=line.unit_price,
                commission_rate=str(line.commission_rate),
                commission_amount=line.commission_amount,
            )
            for line in sub_order.ordered_lines
        ],
    )


def _order_response(order, replayed=False) -> OrderResponse:
    return OrderResponse(
        order_id=order.id,
        buyer_id=order.buyer_id,
        payment_ref=order.payment_ref,
        currency=order.currency,
        status=order.status,
        total_amount=order.total_amount,
        sub_orders=[_sub_order_response(sub_order) for sub_order in order.ordered_sub_orders],
        replayed=replayed,
    )


def _stock_response(stock) -> StockResponse:
    return StockResponse(
        variant_id=stock.variant_id,
        on_hand=stock.on_hand,
        held=stock.held,
        committed=stock.committed,
        available=stock.available,
        low_stock_threshold=stock.low_stock_threshold,
        is_low_stock=stock.is_low_stock,
    )


def _rules_response(rules) -> RulesResponse:
    return RulesResponse(
        version=rules.version,
        default_rate=str(rules.default_rate),
        category_rates=_rates(rules.category_rates),
        tier_rates=_rates(rules.tier_rates),
        tier_category_rates={tier: _rates(overrides) for tier, overrides in rules.tier_category_rates.items()},
        tier_thresholds=[TierThresholdSchema(volume=t.volume, tier=t.tier) for t in rules.tier_thresholds],
        seller_rates=_rates(rules.seller_rates),
    )


# ---------------------------------------------------------------------------
# Orders Router
# ---------------------------------------------------------------------------
orders_router = APIRouter(prefix="/orders", tags=["orders"])


@orders_router.post("", status_code=201, response_model=OrderResponse)
async def place_checkout(body: CheckoutRequest) -> OrderResponse:
    command = PlaceCheckout(
        buyer_id=body.buyer_id,
        payment_ref=body.payment_ref,
        lines=json.dumps([line.model_dump() for line in body.lines]),
    )
    result = current_domain.process(command, asynchronous=False)
    return _order_response(get_order(result.order_id), replayed=result.replayed)


@orders_router.get("/{order_id}", response_model=OrderResponse)
async def read_order(order_id: str) -> OrderResponse:
    return _order_response(get_order(order_id))


@orders_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, body: CancelRequest) -> OrderResponse:
    command = CancelOrder(order_id=order_id, reason=body.reason, cancelled_by=body.cancelled_by)
    current_domain.process(command, asynchronous=False)
    return _order_response(get_order(order_id))


# ---------------------------------------------------------------------------
# Sub-orders Router
# ---------------------------------------------------------------------------
sub_orders_router = APIRouter(prefix="/sub-orders", tags=["orders"])


@sub_orders_router.get("/{sub_order_id}", response_model=SubOrderResponse)
async def read_sub_order(sub_order_id: str) -> SubOrderResponse:
    return _sub_order_response(get_sub_order(sub_order_id))


@sub_orders_router.post("/{sub_order_id}/fulfil", response_model=SubOrderResponse)
async def fulfil_sub_order(sub_order_id: str) -> SubOrderResponse:
    current_domain.process(FulfilSubOrder(sub_order_id=sub_order_id), asynchronous=False)
    return _sub_order_response(get_sub_order(sub_order_id))


@sub_orders_router.post("/{sub_order_id}/cancel", response_model=SubOrderResponse)
async def cancel_sub_order(sub_order_id: str, body: CancelRequest) -> SubOrderResponse:
    command = CancelSubOrder(sub_order_id=sub_order_id, reason=body.reason, cancelled_by=body.cancelled_by)
    current_domain.process(command, asynchronous=False)
    return _sub_order_response(get_sub_order(sub_order_id))


# ---------------------------------------------------------------------------
# Gateway Webhooks Router
# ---------------------------------------------------------------------------
webhooks_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhooks_router.post("/payments", response_model=PaymentConfirmedResponse)
async def payment_confirmed(body: PaymentConfirmedRequest) -> PaymentConfirmedResponse:
    command = ConfirmPayment(
        order_id=body.order_id,
        payment_ref=body.payment_ref,
        captured_amount=body.captured_amount,
    )
    outcome = current_domain.process(command, asynchronous=False)
    return PaymentConfirmedResponse(
        order_id=outcome.order_id,
        payment_ref=outcome.payment_ref,
        status=outcome.status,
        captured_amount=outcome.captured_amount,
        paid_sub_order_ids=list(outcome.paid_sub_order_ids),
        replayed=outcome.replayed,
    )


@webhooks_router.post("/refunds", response_model=RefundResponse)
async def refund_issued(body: RefundRequest) -> RefundResponse:
    command = ProcessRefund(
        sub_order_id=body.sub_order_id,
        refund_ref=body.refund_ref,
        lines=json.dumps([line.model_dump() for line in body.lines]),
        amount=body.amount,
        reason=body.reason,
    )
    outcome = current_domain.process(command, asynchronous=False)
    return RefundResponse(
        sub_order_id=outcome.sub_order_id,
        order_id=outcome.order_id,
        refund_ref=outcome.refund_ref,
        status=outcome.status,
        refunded_amount=outcome.refunded_amount,
        reversed_commission=outcome.reversed_commission,
        reversal_amount=outcome.reversal_amount,
        remaining_total=outcome.remaining_total,
        replayed=outcome.replayed,
    )


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("", status_code=201, response_model=StockResponse)
async def register_stock(body: RegisterStockRequest) -> StockResponse:
    command = RegisterStock(
        variant_id=body.variant_id,
        on_hand=body.on_hand,
        low_stock_threshold=body.low_stock_threshold,
    )
    return _stock_response(current_domain.process(command, asynchronous=False))


@inventory_router.get("/low-stock", response_model=StockListResponse)
async def read_low_stock() -> StockListResponse:
    return StockListResponse(items=[_stock_response(stock) for stock in low_stock()])


@inventory_router.get("/out-of-stock", response_model=StockListResponse)
async def read_out_of_stock() -> StockListResponse:
    return StockListResponse(items=[_stock_response(stock) for stock in out_of_stock()])


@inventory_router.put("/{variant_id}/receive", response_model=StockResponse)
async def receive_stock(variant_id: str, body: ReceiveStockRequest) -> StockResponse:
    command = ReceiveStock(variant_id=variant_id, quantity=body.quantity)
    return _stock_response(current_domain.process(command, asynchronous=False))


@inventory_router.put("/{variant_id}/threshold", response_model=StockResponse)
async def update_threshold(variant_id: str, body: UpdateThresholdRequest) -> StockResponse:
    command = UpdateLowStockThreshold(variant_id=variant_id, low_stock_threshold=body.low_stock_threshold)
    return _stock_response(current_domain.process(command, asynchronous=False))


@inventory_router.get("/{variant_id}", response_model=StockResponse)
async def read_stock(variant_id: str) -> StockResponse:
    return _stock_response(get_stock(variant_id))


# ---------------------------------------------------------------------------
# Commission Router
# ---------------------------------------------------------------------------
commission_router = APIRouter(prefix="/commission", tags=["commission"])


@commission_router.post("/rules", status_code=201, response_model=RulesResponse)
async def publish_rules(body: PublishRulesRequest) -> RulesResponse:
    command = PublishCommissionRules(
        default_rate=str(body.default_rate),
        category_rates=json.dumps(_rates(body.category_rates)),
        tier_rates=json.dumps(_rates(body.tier_rates)),
        tier_category_rates=json.dumps(
            {tier: _rates(overrides) for tier, overrides in body.tier_category_rates.items()}
        ),
        tier_thresholds=json.dumps([t.model_dump() for t in body.tier_thresholds]),
        seller_rates=json.dumps(_rates(body.seller_rates)),
        published_by=body.published_by,
    )
    return _rules_response(current_domain.process(command, asynchronous=False))


@commission_router.get("/rules/active", response_model=RulesResponse)
async def read_active_rules() -> RulesResponse:
    return _rules_response(get_active_rules())


@commission_router.get("/rules/{version}", response_model=RulesResponse)
async def read_rules(version: int) -> RulesResponse:
    return _rules_response(get_rules(version))


# ---------------------------------------------------------------------------
# Seller Ledger Router
# ---------------------------------------------------------------------------
sellers_router = APIRouter(prefix="/sellers", tags=["ledger"])


@sellers_router.get("/{seller_id}/balance", response_model=BalanceResponse)
async def read_balance(seller_id: str, as_of: datetime | None = None) -> BalanceResponse:
    balance = get_balance(seller_id, as_of)
    return BalanceResponse(
        seller_id=balance.seller_id,
        total=balance.total,
        available=balance.available,
        pending=balance.pending,
        as_of=balance.as_of,
    )


@sellers_router.get("/{seller_id}/ledger", response_model=LedgerStatementResponse)
async def read_ledger(
    seller_id: str, start: datetime | None = None, end: datetime | None = None
) -> LedgerStatementResponse:
    entries = get_entries(seller_id, start, end)
    return LedgerStatementResponse(
        seller_id=seller_id,
        entries=[
            LedgerEntryResponse(
                entry_id=entry.id,
                order_id=entry.order_id,
                sub_order_id=entry.sub_order_id,
                kind=entry.kind,
                amount=entry.amount,
                signed_amount=entry.signed_amount,
                reference=entry.reference,
                created_at=entry.created_at,
                available_at=entry.available_at,
            )
            for entry in entries
        ],
    )
