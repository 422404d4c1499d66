"""Order Store: the single arbiter of order status.

Status changes go through `transition`, a compare-and-swap on `status =
'created'`, so duplicate notifications can race without double-applying.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from checkoutflow.common.errors import DbWriteFailed
from checkoutflow.common.logging import logger
from checkoutflow.common.state_machine import CREATED, validate_transition
from checkoutflow.services.orders.models import CheckoutEvent, Order, PaymentRecord

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class OrderStore:
    """Repository over orders, payment records and checkout events."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def insert_order(
        self,
        order_ref: str,
        product_code: str,
        amount: Decimal,
        currency: str,
        event_type: str,
        event_payload: dict[str, Any],
    ) -> Order:
        """Insert a `created` order plus its creation event in one transaction.

        A duplicate `order_ref` raises instead of overwriting the existing row.
        """

        with self.session_factory() as db:
            order = Order(
                order_ref=order_ref,
                product_code=product_code,
                amount=amount,
                currency=currency,
                status=CREATED,
            )
            db.add(order)
            db.add(CheckoutEvent(event_type=event_type, order_ref=order_ref, payload=event_payload))
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.error("order insert rejected order_ref=%s error=%s", order_ref, exc)
                raise DbWriteFailed("orders", code="db_order_insert_failed", order_ref=order_ref) from exc
            return order

    def get_order(self, order_ref: str) -> Order | None:
        with self.session_factory() as db:
            return db.get(Order, order_ref)

    def transition(
        self,
        order_ref: str,
        new_status: str,
        event_type: str,
        event_payload: dict[str, Any],
    ) -> bool:
        """Move `order_ref` from `created` to `new_status` at most once.

        Returns True only for the call that applied the change; that call also
        writes `event_type`. Later calls (replays, races) return False.
        """

        validate_transition(CREATED, new_status)
        with self.session_factory() as db:
            result = db.execute(
                update(Order)
                .where(Order.order_ref == order_ref, Order.status == CREATED)
                .values(status=new_status, updated_at=datetime.now(timezone.utc))
            )
            if result.rowcount != 1:
                db.rollback()
                return False
            db.add(CheckoutEvent(event_type=event_type, order_ref=order_ref, payload=event_payload))
            db.commit()
            return True

    def record_payment(
        self,
        provider: str,
        order_ref: str,
        provider_tx_id: str,
        status: str,
        raw_payload: dict[str, Any],
    ) -> None:
        """Upsert one payment record keyed by `(provider, provider_tx_id, status)`.

        A resend refreshes its own row; a new status for the same transaction
        gets a row of its own so earlier notifications stay on record.
        """

        with self.session_factory() as db:
            dialect = db.get_bind().dialect.name
            insert = _UPSERT_DIALECTS.get(dialect)
            if insert is None:
                raise RuntimeError(f"payment upsert not supported on dialect {dialect}")
            stmt = insert(PaymentRecord).values(
                id=str(uuid4()),
                provider=provider,
                order_ref=order_ref,
                provider_tx_id=provider_tx_id,
                status=status,
                raw_payload=raw_payload,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["provider", "provider_tx_id", "status"],
                set_={
                    "raw_payload": stmt.excluded.raw_payload,
                    "updated_at": func.now(),
                },
            )
            db.execute(stmt)
            db.commit()

    def record_event(self, event_type: str, order_ref: str | None, payload: dict[str, Any]) -> None:
        with self.session_factory() as db:
            db.add(CheckoutEvent(event_type=event_type, order_ref=order_ref, payload=payload))
            db.commit()

    def latest_payment(
        self,
        order_ref: str,
        matching: Callable[[str], bool] | None = None,
    ) -> PaymentRecord | None:
        """Newest payment record, optionally the newest whose raw status passes `matching`."""

        with self.session_factory() as db:
            payments = db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.order_ref == order_ref)
                .order_by(PaymentRecord.updated_at.desc(), PaymentRecord.created_at.desc())
            ).scalars()
            for payment in payments:
                if matching is None or matching(payment.status):
                    return payment
            return None

    def list_payments(self, order_ref: str) -> list[PaymentRecord]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentRecord)
                    .where(PaymentRecord.order_ref == order_ref)
                    .order_by(PaymentRecord.created_at)
                ).scalars()
            )

    def list_events(self, order_ref: str | None = None, event_type: str | None = None) -> list[CheckoutEvent]:
        query = select(CheckoutEvent).order_by(CheckoutEvent.created_at)
        if order_ref is not None:
            query = query.where(CheckoutEvent.order_ref == order_ref)
        if event_type is not None:
            query = query.where(CheckoutEvent.event_type == event_type)
        with self.session_factory() as db:
            return list(db.execute(query).scalars())

    def list_orders(
        self,
        status: str | None = None,
        created_before: datetime | None = None,
        limit: int = 100,
    ) -> list[Order]:
        query = select(Order).order_by(Order.created_at).limit(limit)
        if status is not None:
            query = query.where(Order.status == status)
        if created_before is not None:
            query = query.where(Order.created_at < created_before)
        with self.session_factory() as db:
            return list(db.execute(query).scalars())
