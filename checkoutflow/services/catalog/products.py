"""Static product catalog for the two landing brands.

Pure lookups: price, currency, localized copy and the post-payment destinations
for each product code.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from checkoutflow.common.config import settings

LOCALES = ("ua", "en")
GATEWAY_NAME_LIMIT = 255


@dataclass(frozen=True)
class ProductCopy:
    heading: str
    description: str


@dataclass(frozen=True)
class Product:
    code: str
    title: str
    amount: Decimal
    currency: str
    approved_url: str
    declined_url: str
    copy: dict[str, ProductCopy]

    def copy_for(self, locale: str) -> ProductCopy:
        return self.copy.get(locale) or self.copy["en"]


PRODUCTS: dict[str, Product] = {
    "short": Product(
        code="short",
        title="Short Reboot",
        amount=Decimal("1"),
        currency="UAH",
        approved_url="https://reboot.centerway.net.ua/thanks",
        declined_url="https://reboot.centerway.net.ua/pay-failed",
        copy={
            "ua": ProductCopy(
                heading="Short Reboot: коротке перезавантаження тіла і голови",
                description="Серія коротких практик на кожен день.<br>Доступ відкривається одразу після оплати.",
            ),
            "en": ProductCopy(
                heading="Short Reboot: a quick reset for body and mind",
                description="A series of short daily practices.<br>Access opens right after payment.",
            ),
        },
    ),
    "irem": Product(
        code="irem",
        title="IREM",
        amount=Decimal("2"),
        currency="UAH",
        approved_url="https://irem.centerway.net.ua/thanks",
        declined_url="https://irem.centerway.net.ua/pay-failed",
        copy={
            "ua": ProductCopy(
                heading="IREM: гімнастика для спини та суглобів",
                description="Повний курс занять у Telegram-боті.<br>Заняття у власному темпі.",
            ),
            "en": ProductCopy(
                heading="IREM: gymnastics for back and joints",
                description="The full course in a Telegram bot.<br>Train at your own pace.",
            ),
        },
    ),
}


def normalize_product(value: Any) -> str | None:
    """Known product code for `value`, or None."""

    if not isinstance(value, str):
        return None
    code = value.strip().lower()
    return code if code in PRODUCTS else None


def fallback_product() -> str:
    return normalize_product(settings.fallback_product) or "short"


def product_or_fallback(value: Any) -> str:
    """Unknown codes resolve to the configured fallback product, never an error."""

    return normalize_product(value) or fallback_product()


def product_from_order_ref(order_ref: str | None) -> str | None:
    """Parse the `{code}_...` prefix of an order reference."""

    if not order_ref or "_" not in order_ref:
        return None
    return normalize_product(order_ref.split("_", 1)[0])


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip().lower() or None


def resolve_checkout_product(body: Mapping[str, Any]) -> str:
    """Pick the product for a landing checkout request."""

    explicit = normalize_product(body.get("product")) or normalize_product(body.get("product_code"))
    if explicit:
        return explicit

    site = normalize_product(_clean(body.get("site")))
    if site:
        return site

    offer = _clean(body.get("offer_id")) or ""
    if "irem" in offer:
        return "irem"
    if "short" in offer or "reboot" in offer:
        return "short"
    return fallback_product()


_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_SPACE_RE = re.compile(r"\s+")


def sanitize_gateway_name(text: str) -> str:
    """Strip line-break tags, collapse whitespace, cap at the gateway limit."""

    cleaned = _SPACE_RE.sub(" ", _BREAK_RE.sub(" ", text)).strip()
    if len(cleaned) <= GATEWAY_NAME_LIMIT:
        return cleaned
    return cleaned[: GATEWAY_NAME_LIMIT - 3] + "..."


def gateway_product_name(code: str, locale: str) -> str:
    copy = PRODUCTS[code].copy_for(locale)
    return sanitize_gateway_name(f"{copy.heading} — {copy.description}")
