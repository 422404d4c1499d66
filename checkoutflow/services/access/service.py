"""One-time access tokens bound to an order, used by post-payment pages."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import update

from checkoutflow.common.errors import Conflict, Gone, NotFound
from checkoutflow.common.logging import logger, order_ref_ctx
from checkoutflow.services.orders.models import AccessToken, CheckoutEvent, Order


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AccessTokenService:
    def __init__(
        self,
        session_factory,
        ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def create(self, order_ref: str) -> dict[str, Any]:
        """Issue a 32-hex token for an existing order."""

        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        with self.session_factory() as db:
            if db.get(Order, order_ref) is None:
                raise NotFound(code="order_not_found", order_ref=order_ref)
            token = secrets.token_hex(16)
            db.add(AccessToken(token=token, order_ref=order_ref, expires_at=expires_at, used=False))
            db.add(
                CheckoutEvent(
                    event_type="token_created",
                    order_ref=order_ref,
                    payload={"expires_at": expires_at.isoformat()},
                )
            )
            db.commit()
        order_ref_ctx.set(order_ref)
        logger.info("access token created order_ref=%s", order_ref)
        return {"token": token, "order_ref": order_ref, "expires_at": expires_at.isoformat()}

    def consume(self, token: str) -> dict[str, Any]:
        """Mark `token` used and return its order.

        Raises `NotFound` for unknown tokens, `Conflict` once used and `Gone`
        after expiry. Two racing consumers cannot both succeed: the write is
        conditional on `used = false`.
        """

        now = self.clock()
        with self.session_factory() as db:
            row = db.get(AccessToken, token)
            if row is None:
                raise NotFound(code="token_not_found")
            order_ref_ctx.set(row.order_ref)
            if row.used:
                raise Conflict(code="token_used", order_ref=row.order_ref)
            if _aware(row.expires_at) <= now:
                raise Gone(code="token_expired", order_ref=row.order_ref)

            result = db.execute(
                update(AccessToken)
                .where(AccessToken.token == token, AccessToken.used.is_(False))
                .values(used=True, used_at=now)
            )
            if result.rowcount != 1:
                db.rollback()
                raise Conflict(code="token_used", order_ref=row.order_ref)
            db.add(CheckoutEvent(event_type="token_consumed", order_ref=row.order_ref, payload={}))
            db.commit()

            order = db.get(Order, row.order_ref)
            logger.info("access token consumed order_ref=%s", row.order_ref)
            return {
                "ok": True,
                "order_ref": row.order_ref,
                "product": order.product_code if order else None,
                "status": order.status if order else None,
            }
