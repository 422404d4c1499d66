"""Sign and post a gateway-style webhook to a running checkout instance.

Useful for replaying duplicate or conflicting notifications by hand.
"""

import argparse
import json
import os

import httpx

from checkoutflow.common.signature import WEBHOOK_FIELDS, ordered_values, sign


def build_payload(args: argparse.Namespace) -> dict:
    payload = {
        "merchantAccount": args.merchant_account,
        "orderReference": args.order_ref,
        "amount": args.amount,
        "currency": args.currency,
        "authCode": "123456",
        "cardPan": "41****1111",
        "transactionStatus": args.status,
        "reasonCode": 1100,
    }
    if args.transaction_id:
        payload["transactionId"] = args.transaction_id
    payload["merchantSignature"] = sign(args.secret, ordered_values(payload, WEBHOOK_FIELDS))
    return payload


def main() -> None:
    """Parse CLI args, sign one notification and print the acknowledgement."""

    parser = argparse.ArgumentParser(description="Post a signed WayForPay-style webhook.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--order-ref", required=True)
    parser.add_argument("--status", default="Approved")
    parser.add_argument("--amount", type=float, default=1)
    parser.add_argument("--currency", default="UAH")
    parser.add_argument("--transaction-id", default=None)
    parser.add_argument("--merchant-account", default=os.getenv("WFP_MERCHANT_ACCOUNT", ""))
    parser.add_argument("--secret", default=os.getenv("WFP_SECRET_KEY", ""))
    parser.add_argument("--form", action="store_true", help="Send form-encoded instead of JSON")
    args = parser.parse_args()

    if not args.secret:
        raise SystemExit("Provide --secret or WFP_SECRET_KEY")

    payload = build_payload(args)
    url = f"{args.base_url}/api/wfp/webhook"
    if args.form:
        resp = httpx.post(url, data=payload, timeout=10.0)
    else:
        resp = httpx.post(url, json=payload, timeout=10.0)
    print(resp.status_code)
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
