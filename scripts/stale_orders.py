"""List orders still in `created` after a grace period.

These are checkouts whose webhook never arrived; an operator can settle them
with `POST /ops/orders/{order_ref}/resolve`.
"""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for the stale order report."""

    parser = argparse.ArgumentParser(description="Print orders stuck in created status.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--older-than-minutes", type=int, default=30)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.base_url}/ops/orders",
        params={"status": "created", "older_than_minutes": args.older_than_minutes, "limit": args.limit},
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    orders = resp.json()["orders"]
    print(json.dumps({"stale": len(orders), "orders": orders}, indent=2))


if __name__ == "__main__":
    main()
