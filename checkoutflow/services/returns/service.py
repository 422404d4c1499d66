"""Return Resolver.

The browser redirect back from the gateway races the webhook, so its own
`status` parameters are ignored; only the stored order status decides where
the user lands.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from checkoutflow.common.logging import logger, order_ref_ctx
from checkoutflow.common.metrics import return_resolutions_total
from checkoutflow.common.payloads import pick
from checkoutflow.common.state_machine import PAID, is_terminal
from checkoutflow.services.catalog.products import (
    PRODUCTS,
    fallback_product,
    normalize_product,
    product_from_order_ref,
)
from checkoutflow.services.invoice.gateway import wire_amount
from checkoutflow.services.orders.store import OrderStore
from checkoutflow.services.webhook.statuses import coarse_status

ORDER_REF_KEYS = ("order_ref", "orderReference", "ORDERREFERENCE", "orderreference")
PRODUCT_KEYS = ("product", "PRODUCT", "product_code", "productCode")

REDIRECT = "redirect"
PROCESSING = "processing"
ERROR = "error"


@dataclass(frozen=True)
class ReturnOutcome:
    kind: str
    product: str
    order_ref: str | None = None
    url: str | None = None
    refresh_url: str | None = None
    params: dict[str, str] = field(default_factory=dict)


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def extract_payment_meta(raw: Any) -> dict[str, str | None]:
    """Pull the display fields out of a stored gateway payload."""

    data = raw if isinstance(raw, Mapping) else {}

    def first(*keys: str) -> str | None:
        for key in keys:
            value = _text(data.get(key))
            if value:
                return value
        return None

    return {
        "rrn": first("rrn", "RRN"),
        "payment_id": first("transactionId", "paymentId"),
        "amount": first("amount", "paymentAmount", "orderAmount"),
        "currency": first("currency", "orderCurrency", "paymentCurrency"),
        "email": first("email", "payerEmail"),
        "phone": first("phone", "payerPhone"),
        "card": first("cardPan", "card", "maskedCard", "pan"),
    }


def with_query(url: str, params: Mapping[str, str]) -> str:
    """`url` with `params` merged into its query string."""

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


class ReturnResolver:
    def __init__(
        self,
        store: OrderStore,
        refresh_seconds: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.refresh_seconds = refresh_seconds
        self.clock = clock

    def resolve(self, query: Mapping[str, Any], body: Mapping[str, Any] | None = None) -> ReturnOutcome:
        """Decide what the returning browser sees.

        Query parameters win over body parameters for both the order reference
        and the product hint.
        """

        body = body or {}
        order_ref = pick(query, ORDER_REF_KEYS) or pick(body, ORDER_REF_KEYS)
        hinted = normalize_product(pick(query, PRODUCT_KEYS) or pick(body, PRODUCT_KEYS))
        product = hinted or product_from_order_ref(order_ref) or fallback_product()

        if not order_ref:
            return_resolutions_total.labels(outcome=ERROR).inc()
            logger.warning("return without order reference")
            return ReturnOutcome(kind=ERROR, product=product)
        order_ref_ctx.set(order_ref)

        order = self.store.get_order(order_ref)
        if order is not None and order.product_code != product and order.product_code in PRODUCTS:
            logger.warning(
                "return product hint differs from order order_ref=%s hint=%s stored=%s",
                order_ref,
                product,
                order.product_code,
            )
            product = order.product_code

        if order is None or not is_terminal(order.status):
            return_resolutions_total.labels(outcome=PROCESSING).inc()
            logger.info(
                "return before terminal status order_ref=%s status=%s",
                order_ref,
                order.status if order else None,
            )
            refresh_url = "/pay/return?" + urlencode({"order_ref": order_ref, "product": product})
            return ReturnOutcome(
                kind=PROCESSING,
                product=product,
                order_ref=order_ref,
                refresh_url=refresh_url,
            )

        catalog = PRODUCTS[product]
        target = catalog.approved_url if order.status == PAID else catalog.declined_url
        payment = self.store.latest_payment(
            order_ref, matching=lambda status: coarse_status(status).value == order.status
        )
        meta = extract_payment_meta(payment.raw_payload if payment else None)

        params = {
            "order_ref": order_ref,
            "product": product,
            "amount": str(wire_amount(order.amount)),
            "currency": order.currency,
        }
        if meta["rrn"]:
            params["rrn"] = meta["rrn"]
        if meta["payment_id"]:
            params["payment_id"] = meta["payment_id"]
        params["ts"] = str(int(self.clock() * 1000))

        return_resolutions_total.labels(outcome=order.status).inc()
        logger.info("return redirect order_ref=%s status=%s", order_ref, order.status)
        return ReturnOutcome(
            kind=REDIRECT,
            product=product,
            order_ref=order_ref,
            url=with_query(target, params),
            params=params,
        )
