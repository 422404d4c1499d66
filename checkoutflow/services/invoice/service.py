"""Invoice Requester.

Creates the order row first, then asks the gateway for a payable invoice. The
row is persisted even when the gateway call fails; such orders stay `created`
and the return page keeps showing "processing" for them.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable

import httpx

from checkoutflow.common.config import GatewayConfig
from checkoutflow.common.errors import GatewayNoUrl, GatewayUnreachable
from checkoutflow.common.logging import logger, order_ref_ctx
from checkoutflow.common.metrics import gateway_latency_seconds, invoice_requests_total
from checkoutflow.common.state_machine import CREATED
from checkoutflow.services.catalog.products import PRODUCTS, Product, product_or_fallback
from checkoutflow.services.invoice.gateway import build_invoice_request, extract_pay_url, wire_amount
from checkoutflow.services.orders.models import Order
from checkoutflow.services.orders.store import OrderStore


@dataclass(frozen=True)
class InvoiceResult:
    order_ref: str
    product: str
    pay_url: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceService:
    """Mints order references, persists orders and requests gateway invoices."""

    def __init__(
        self,
        store: OrderStore,
        gateway: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
        token_hex: Callable[[int], str] = secrets.token_hex,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.transport = transport
        self.clock = clock
        self.token_hex = token_hex

    def mint_order_ref(self, product_code: str, now: datetime | None = None) -> str:
        """`{product}_{YYYYMMDD}_{8 hex}`; uniqueness is enforced by the insert."""

        now = now or self.clock()
        return f"{product_code}_{now:%Y%m%d}_{self.token_hex(4)}"

    def _insert(self, product: Product, now: datetime, event_type: str, payload: dict[str, Any]) -> Order:
        order_ref = self.mint_order_ref(product.code, now)
        order_ref_ctx.set(order_ref)
        return self.store.insert_order(
            order_ref=order_ref,
            product_code=product.code,
            amount=product.amount,
            currency=product.currency,
            event_type=event_type,
            event_payload=payload,
        )

    def create_order(self, product_code: Any, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Order-creation side channel: a `created` order without an invoice."""

        product = PRODUCTS[product_or_fallback(product_code)]
        order = self._insert(product, self.clock(), "order_created", dict(payload or {}))
        logger.info("order created order_ref=%s product=%s", order.order_ref, product.code)
        return {
            "order_ref": order.order_ref,
            "product": product.code,
            "amount": wire_amount(product.amount),
            "currency": product.currency,
            "status": CREATED,
        }

    async def create_invoice(
        self,
        product_code: Any,
        locale: str,
        source: str = "pay_start",
        host: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> InvoiceResult:
        """Create an order and a gateway invoice for it.

        Raises `GatewayUnreachable` on transport errors/timeouts and
        `GatewayNoUrl` when the response carries no pay URL. No retry happens
        here; a caller retry mints a fresh order reference.
        """

        product = PRODUCTS[product_or_fallback(product_code)]
        now = self.clock()
        event_payload = {"source": source, "host": host, "product": product.code, "locale": locale}
        event_payload.update(payload or {})
        order = self._insert(product, now, "checkout_started", event_payload)
        order_ref = order.order_ref

        request = build_invoice_request(self.gateway, order_ref, int(now.timestamp()), product, locale)
        started = perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self.gateway.timeout_seconds, transport=self.transport
            ) as client:
                resp = await client.post(self.gateway.api_url, json=request)
        except httpx.HTTPError as exc:
            invoice_requests_total.labels(product=product.code, outcome="unreachable").inc()
            logger.error("gateway unreachable order_ref=%s error=%r", order_ref, exc)
            raise GatewayUnreachable(str(exc), order_ref=order_ref, raw=repr(exc)) from exc
        finally:
            gateway_latency_seconds.observe(max(0.0, perf_counter() - started))

        pay_url = extract_pay_url(resp.text)
        if not pay_url:
            invoice_requests_total.labels(product=product.code, outcome="no_url").inc()
            logger.error(
                "gateway returned no invoice url order_ref=%s http_status=%s",
                order_ref,
                resp.status_code,
            )
            raise GatewayNoUrl(order_ref=order_ref, raw=resp.text)

        invoice_requests_total.labels(product=product.code, outcome="ok").inc()
        logger.info("invoice created order_ref=%s product=%s", order_ref, product.code)
        return InvoiceResult(order_ref=order_ref, product=product.code, pay_url=pay_url)
