"""Marketplace settlement FastAPI application.

Checkout, payment and refund webhooks, cancellation and fulfilment, stock
registration, commission rule publication and seller ledger reporting.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

import os
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from settlement.api import (
    commission_router,
    inventory_router,
    orders_router,
    register_error_handlers,
    sellers_router,
    sub_orders_router,
    webhooks_router,
)
from settlement.domain import settlement
from settlement.utils.logging import add_context, clear_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# Initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the domain.toml overlay (development, test, production).
configure_logging()
settlement.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Marketplace Settlement API",
    description="Order splitting, commission, seller earnings, inventory holds and refunds",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the settlement domain context for each request."""
    with settlement.domain_context():
        return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id to every log line written while handling the request."""
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    add_context(request_id=request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_context()
    response.headers["X-Request-ID"] = request_id
    return response


register_error_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(orders_router)
app.include_router(sub_orders_router)
app.include_router(webhooks_router)
app.include_router(inventory_router)
app.include_router(commission_router)
app.include_router(sellers_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domain": settlement.name,
            "env": os.getenv("PROTEAN_ENV", "development"),
        }
    )
