"""WayForPay CREATE_INVOICE request/response wire format."""

import json
from decimal import Decimal
from urllib.parse import urlencode

from checkoutflow.common.config import GatewayConfig
from checkoutflow.common.signature import invoice_signature
from checkoutflow.services.catalog.products import Product, gateway_product_name

PROVIDER = "wayforpay"
# Field name differs between gateway API versions.
PAY_URL_FIELDS = ("invoiceUrl", "url", "paymentUrl")
GATEWAY_LANGUAGES = {"ua": "UA", "en": "EN"}


def build_return_url(app_base_url: str, product: str, order_ref: str) -> str:
    query = urlencode({"product": product, "order_ref": order_ref})
    return f"{app_base_url.rstrip('/')}/pay/return?{query}"


def wire_amount(amount: Decimal) -> int | float:
    """JSON number for an amount; integral values go out without a fraction."""

    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def build_invoice_request(
    config: GatewayConfig,
    order_ref: str,
    order_date: int,
    product: Product,
    locale: str,
) -> dict:
    """Signed CREATE_INVOICE body for one order."""

    amount = wire_amount(product.amount)
    request = {
        "apiVersion": 1,
        "transactionType": "CREATE_INVOICE",
        "merchantAccount": config.merchant_account,
        "merchantDomainName": config.merchant_domain,
        "orderReference": order_ref,
        "orderDate": order_date,
        "amount": amount,
        "currency": product.currency,
        "productName": [gateway_product_name(product.code, locale)],
        "productCount": [1],
        "productPrice": [amount],
        "serviceUrl": config.service_url,
        "returnUrl": build_return_url(config.app_base_url, product.code, order_ref),
        "language": GATEWAY_LANGUAGES.get(locale, "EN"),
    }
    request["merchantSignature"] = invoice_signature(config.secret_key, request)
    return request


def extract_pay_url(body: str) -> str | None:
    """Pay URL from a gateway response body, or None if absent/unparseable."""

    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    for key in PAY_URL_FIELDS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
