"""Webhook Reconciler.

Verifies gateway notifications, keeps an audit trail of every verified call,
and moves the order out of `created` at most once. The acknowledgement is
signed so the gateway stops redelivering.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from checkoutflow.common.config import GatewayConfig
from checkoutflow.common.errors import BadRequest, DbWriteFailed, SignatureMismatch
from checkoutflow.common.logging import logger, order_ref_ctx
from checkoutflow.common.metrics import (
    db_write_failures_total,
    duplicate_transitions_skipped_total,
    order_transitions_total,
    retries_total,
    webhook_events_total,
)
from checkoutflow.common.payloads import Fields, pick
from checkoutflow.common.signature import (
    ACCEPT,
    WEBHOOK_FIELDS,
    ordered_values,
    sign_acknowledgement,
    signature_string,
    verify_inbound,
)
from checkoutflow.services.invoice.gateway import PROVIDER
from checkoutflow.services.orders.store import OrderStore
from checkoutflow.services.webhook.statuses import CoarseStatus, coarse_status


@dataclass(frozen=True)
class Acknowledgement:
    order_ref: str
    time: int
    signature: str

    def as_response(self) -> dict[str, Any]:
        return {
            "orderReference": self.order_ref,
            "status": ACCEPT,
            "time": self.time,
            "signature": self.signature,
        }


def provider_tx_id(fields: Fields, order_ref: str, raw_status: str) -> str:
    """Gateway transaction id, or a deterministic stand-in when it is absent."""

    return pick(fields, ["transactionId"]) or f"{order_ref}:{raw_status.lower() or 'unknown'}"


class WebhookReconciler:
    """Applies verified gateway notifications to the Order Store."""

    def __init__(
        self,
        store: OrderStore,
        gateway: GatewayConfig,
        clock: Callable[[], float] = time.time,
        status_write_attempts: int = 3,
        backoff_seconds: float = 0.2,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.clock = clock
        self.status_write_attempts = status_write_attempts
        self.backoff_seconds = backoff_seconds

    def acknowledge(self, order_ref: str) -> Acknowledgement:
        now = int(self.clock())
        return Acknowledgement(
            order_ref=order_ref,
            time=now,
            signature=sign_acknowledgement(self.gateway.secret_key, order_ref, now),
        )

    def _audit_failed(self, table: str, order_ref: str, exc: Exception) -> None:
        # Audit rows are best effort: the gateway still gets its acknowledgement.
        db_write_failures_total.labels(table=table).inc()
        logger.error("%s order_ref=%s table=%s error=%s", DbWriteFailed.code, order_ref, table, exc)

    def _record_event(self, event_type: str, order_ref: str, payload: dict[str, Any]) -> None:
        try:
            self.store.record_event(event_type, order_ref or None, payload)
        except SQLAlchemyError as exc:
            self._audit_failed("checkout_events", order_ref, exc)

    def _record_payment(self, order_ref: str, tx_id: str, raw_status: str, raw: dict[str, Any]) -> None:
        try:
            self.store.record_payment(PROVIDER, order_ref, tx_id, raw_status, raw)
        except SQLAlchemyError as exc:
            self._audit_failed("payments", order_ref, exc)

    async def _transition(self, order_ref: str, new_status: str, payload: dict[str, Any]) -> bool:
        """Conditional status write, retried with exponential backoff."""

        event_type = f"order_{new_status}"
        for attempt in range(1, self.status_write_attempts + 1):
            try:
                return self.store.transition(order_ref, new_status, event_type, payload)
            except SQLAlchemyError as exc:
                db_write_failures_total.labels(table="orders").inc()
                if attempt == self.status_write_attempts:
                    logger.critical(
                        "order status write exhausted order_ref=%s status=%s error=%s",
                        order_ref,
                        new_status,
                        exc,
                    )
                    raise DbWriteFailed("orders", order_ref=order_ref) from exc
                retries_total.labels(dependency="orders").inc()
                backoff = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "order status write failed order_ref=%s attempt=%s backoff_s=%s error=%s",
                    order_ref,
                    attempt,
                    backoff,
                    exc,
                )
                await asyncio.sleep(backoff)
        return False

    async def reconcile(self, fields: Fields, raw: dict[str, Any]) -> Acknowledgement:
        """Verify, audit and apply one notification; return the signed ack.

        Raises `BadRequest` when `orderReference` is missing and
        `SignatureMismatch` when the signature does not verify; neither path
        touches the order. A verified notification for an unknown order has no
        payment row to hang off, so its `checkout_events` rows are the audit record.
        """

        order_ref = pick(fields, ["orderReference"])
        if not order_ref:
            webhook_events_total.labels(outcome="bad_request").inc()
            raise BadRequest("orderReference is required", code="missing_order_reference")
        order_ref_ctx.set(order_ref)

        if not verify_inbound(self.gateway.secret_key, fields):
            webhook_events_total.labels(outcome="bad_signature").inc()
            logger.warning("webhook signature mismatch order_ref=%s", order_ref)
            self._record_event(
                "wfp_bad_signature",
                order_ref,
                {
                    "merchantSignature": fields.get("merchantSignature"),
                    "signed": signature_string(ordered_values(fields, WEBHOOK_FIELDS)),
                },
            )
            raise SignatureMismatch(order_ref=order_ref)

        raw_status = pick(fields, ["transactionStatus"]) or ""
        self._record_event("wfp_webhook_raw", order_ref, raw)

        order = self.store.get_order(order_ref)
        if order is None:
            webhook_events_total.labels(outcome="unknown_order").inc()
            logger.warning("webhook for unknown order order_ref=%s status=%s", order_ref, raw_status)
            self._record_event("webhook_unknown_order", order_ref, {"transactionStatus": raw_status})
            return self.acknowledge(order_ref)

        tx_id = provider_tx_id(fields, order_ref, raw_status)
        self._record_payment(order_ref, tx_id, raw_status, raw)

        outcome = coarse_status(raw_status)
        if outcome is CoarseStatus.NO_OP:
            webhook_events_total.labels(outcome="no_op").inc()
            logger.info("webhook status without transition order_ref=%s status=%s", order_ref, raw_status)
            return self.acknowledge(order_ref)

        applied = await self._transition(
            order_ref,
            outcome.value,
            {"provider": PROVIDER, "provider_tx_id": tx_id, "transactionStatus": raw_status},
        )
        if applied:
            webhook_events_total.labels(outcome="applied").inc()
            order_transitions_total.labels(to_state=outcome.value, source="webhook").inc()
            logger.info("order %s order_ref=%s status=%s", outcome.value, order_ref, raw_status)
        else:
            webhook_events_total.labels(outcome="duplicate").inc()
            duplicate_transitions_skipped_total.labels(to_state=outcome.value).inc()
            current = self.store.get_order(order_ref)
            current_status = current.status if current else None
            if current_status != outcome.value:
                logger.warning(
                    "conflicting terminal notification order_ref=%s stored=%s incoming=%s",
                    order_ref,
                    current_status,
                    raw_status,
                )
            else:
                logger.info("duplicate terminal notification order_ref=%s", order_ref)
        return self.acknowledge(order_ref)
