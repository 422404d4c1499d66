"""Checkout database models.

`orders` is the source of truth for payment status; `payments` and
`checkout_events` are the audit trail around it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from checkoutflow.common.db import Base, JSONType


class Order(Base):
    """One checkout attempt."""

    __tablename__ = "orders"

    order_ref: Mapped[str] = mapped_column(String, primary_key=True)
    product_code: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String, index=True, default="created")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PaymentRecord(Base):
    """Gateway notification as received, one row per transaction and status."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("provider", "provider_tx_id", "status", name="uq_payments_provider_tx_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    provider: Mapped[str] = mapped_column(String)
    order_ref: Mapped[str] = mapped_column(ForeignKey("orders.order_ref"), index=True)
    provider_tx_id: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    raw_payload: Mapped[dict] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CheckoutEvent(Base):
    """Append-only audit and analytics events."""

    __tablename__ = "checkout_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    event_type: Mapped[str] = mapped_column(String, index=True)
    order_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AccessToken(Base):
    """Short-lived one-time token bound to an order."""

    __tablename__ = "access_tokens"

    token: Mapped[str] = mapped_column(String, primary_key=True)
    order_ref: Mapped[str] = mapped_column(ForeignKey("orders.order_ref"), index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
