"""Request/response schemas for the JSON endpoints."""

from pydantic import BaseModel, Field


class OrderCreateRequest(BaseModel):
    """Payload accepted by `POST /api/orders/create`."""

    product_code: str | None = None
    product: str | None = None


class OrderCreateResponse(BaseModel):
    ok: bool = True
    order_ref: str
    product: str
    amount: int | float
    currency: str
    status: str


class CheckoutStartResponse(BaseModel):
    ok: bool = True
    paymentUrl: str
    order_ref: str
    product: str


class TokenCreateRequest(BaseModel):
    order_ref: str = Field(min_length=1)


class TokenConsumeRequest(BaseModel):
    token: str = Field(min_length=1)


class ResolveRequest(BaseModel):
    """Operator decision for an order stuck in `created`."""

    status: str = Field(pattern="^(paid|failed)$")
    reason: str = Field(default="", max_length=500)
