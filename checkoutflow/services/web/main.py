"""Public HTTP surface for checkout: invoices, gateway webhook, browser return.

Also hosts access tokens for post-payment pages and API-key protected operator
views. Status only changes through the Order Store's conditional update.
"""

from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any
from uuid import uuid4

import redis
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from checkoutflow.common.config import load_gateway_config, settings
from checkoutflow.common.db import SessionLocal
from checkoutflow.common.errors import BadRequest, CheckoutError, Conflict, NotFound
from checkoutflow.common.logging import configure_logging, logger, order_ref_ctx, trace_id_ctx
from checkoutflow.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    order_transitions_total,
)
from checkoutflow.common.payloads import normalize_fields, parse_body, pick
from checkoutflow.common.ratelimit import TokenBucket
from checkoutflow.common.startup import log_startup_config
from checkoutflow.common.tracing import instrument_app, setup_tracing
from checkoutflow.services.access.service import AccessTokenService
from checkoutflow.services.catalog.locale import normalize_locale, resolve_locale
from checkoutflow.services.catalog.products import resolve_checkout_product
from checkoutflow.services.invoice.service import InvoiceService
from checkoutflow.services.orders.models import Order
from checkoutflow.services.orders.store import OrderStore
from checkoutflow.services.returns.service import ERROR, PROCESSING, ReturnResolver
from checkoutflow.services.returns.views import error_page, processing_page
from checkoutflow.services.web.schemas import (
    CheckoutStartResponse,
    OrderCreateRequest,
    OrderCreateResponse,
    ResolveRequest,
    TokenConsumeRequest,
    TokenCreateRequest,
)
from checkoutflow.services.webhook.service import WebhookReconciler

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "REDIS_URL",
        "APP_BASE_URL",
        "WFP_MERCHANT_ACCOUNT",
        "WFP_MERCHANT_DOMAIN",
        "WFP_SECRET_KEY",
        "RATE_LIMIT_PER_MINUTE",
        "FALLBACK_PRODUCT",
    ],
)
# Fails startup with ConfigMissing when merchant credentials are absent.
gateway = load_gateway_config(settings)

store = OrderStore(SessionLocal)
invoices = InvoiceService(store, gateway)
webhooks = WebhookReconciler(store, gateway)
returns = ReturnResolver(store, settings.return_refresh_seconds)
tokens = AccessTokenService(SessionLocal, settings.access_token_ttl_seconds)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
limiter = TokenBucket(rdb, settings.rate_limit_per_minute)

app = FastAPI(title="Checkout Flow")
instrument_app(app)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency; bind a trace id for log lines."""

    trace_id = request.headers.get("x-correlation-id") or str(uuid4())
    trace_id_ctx.set(trace_id)
    order_ref_ctx.set("")
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        response.headers["x-trace-id"] = trace_id
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error("request failed path=%s error=%s", request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def read_body(request: Request) -> dict[str, Any]:
    return parse_body(await request.body(), request.headers.get("content-type", ""))


def order_view(order: Order) -> dict[str, Any]:
    return {
        "order_ref": order.order_ref,
        "product_code": order.product_code,
        "amount": str(order.amount),
        "currency": order.currency,
        "status": order.status,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


@app.get("/api/pay/start")
async def pay_start(request: Request, product: str | None = None, format: str | None = None):
    """Create an order and invoice, then send the browser to the gateway."""

    limiter.enforce(client_id(request))
    locale = resolve_locale(dict(request.query_params), request.headers)
    result = await invoices.create_invoice(
        product,
        locale,
        source="pay_start",
        host=request.headers.get("host"),
    )
    if (format or "").lower() == "json":
        return CheckoutStartResponse(paymentUrl=result.pay_url, order_ref=result.order_ref, product=result.product)
    return RedirectResponse(result.pay_url, status_code=302)


@app.post("/api/checkout/start", response_model=CheckoutStartResponse)
async def checkout_start(request: Request):
    """Landing-page checkout: same flow as pay/start, JSON in and out."""

    limiter.enforce(client_id(request))
    body = await read_body(request)
    product = resolve_checkout_product(body)
    locale = normalize_locale(pick(body, ["lang", "locale"])) or resolve_locale(
        dict(request.query_params), request.headers
    )
    context = {key: body[key] for key in ("site", "offer_id", "page_url") if body.get(key) is not None}
    result = await invoices.create_invoice(
        product,
        locale,
        source="checkout_start",
        host=request.headers.get("host"),
        payload=context,
    )
    return CheckoutStartResponse(paymentUrl=result.pay_url, order_ref=result.order_ref, product=result.product)


@app.post("/api/orders/create", response_model=OrderCreateResponse)
def create_order(req: OrderCreateRequest):
    return OrderCreateResponse(**invoices.create_order(req.product_code or req.product))


@app.post("/api/wfp/webhook")
async def wfp_webhook(request: Request):
    """Gateway server-to-server notification; answers with the signed ack."""

    raw = await read_body(request)
    ack = await webhooks.reconcile(normalize_fields(raw), raw)
    return ack.as_response()


@app.api_route("/pay/return", methods=["GET", "POST"])
async def pay_return(request: Request):
    query = dict(request.query_params)
    body: dict[str, Any] = {}
    if request.method == "POST":
        try:
            body = normalize_fields(await read_body(request))
        except BadRequest as exc:
            logger.warning("return body ignored error=%s", exc)
    locale = resolve_locale(query, request.headers)
    outcome = returns.resolve(query, body)
    if outcome.kind == ERROR:
        return HTMLResponse(error_page(locale), status_code=400)
    if outcome.kind == PROCESSING:
        return HTMLResponse(
            processing_page(outcome.refresh_url, returns.refresh_seconds, outcome.product, locale),
            headers={"Cache-Control": "no-store"},
        )
    return RedirectResponse(outcome.url, status_code=303)


@app.post("/api/tokens/create")
def create_token(req: TokenCreateRequest):
    return {"ok": True, **tokens.create(req.order_ref)}


@app.post("/api/tokens/consume")
def consume_token(req: TokenConsumeRequest):
    return tokens.consume(req.token)


@app.get("/ops/orders")
def ops_list_orders(
    status: str | None = None,
    older_than_minutes: int | None = None,
    limit: int = 100,
    x_api_key: str | None = Header(default=None),
):
    """Operator listing; `older_than_minutes` finds orders stuck in processing."""

    enforce_api_key(x_api_key)
    created_before = None
    if older_than_minutes is not None:
        created_before = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    orders = store.list_orders(status=status, created_before=created_before, limit=min(max(limit, 1), 500))
    return {"ok": True, "orders": [order_view(order) for order in orders]}


@app.get("/ops/orders/{order_ref}")
def ops_get_order(order_ref: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    order = store.get_order(order_ref)
    if order is None:
        raise NotFound(code="order_not_found", order_ref=order_ref)
    return {
        "ok": True,
        "order": order_view(order),
        "payments": [
            {"provider_tx_id": p.provider_tx_id, "status": p.status, "raw_payload": p.raw_payload}
            for p in store.list_payments(order_ref)
        ],
        "events": [
            {
                "event_type": e.event_type,
                "payload": e.payload,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in store.list_events(order_ref=order_ref)
        ],
    }


@app.post("/ops/orders/{order_ref}/resolve")
def ops_resolve_order(order_ref: str, req: ResolveRequest, x_api_key: str | None = Header(default=None)):
    """Manually settle an order that never got a webhook, through the same gate."""

    enforce_api_key(x_api_key)
    order_ref_ctx.set(order_ref)
    order = store.get_order(order_ref)
    if order is None:
        raise NotFound(code="order_not_found", order_ref=order_ref)
    applied = store.transition(
        order_ref,
        req.status,
        "order_resolved_manually",
        {"status": req.status, "reason": req.reason},
    )
    if not applied:
        current = store.get_order(order_ref)
        raise Conflict(code="order_already_terminal", order_ref=order_ref, status=current.status if current else None)
    order_transitions_total.labels(to_state=req.status, source="ops").inc()
    logger.info("order resolved manually order_ref=%s status=%s", order_ref, req.status)
    return {"ok": True, "order_ref": order_ref, "status": req.status}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
