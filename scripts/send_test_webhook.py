#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import time
from typing import Any

import httpx
from httpx import ConnectError

from booking_reconciler.infrastructure.webhooks.signature import SIGNATURE_HEADERS, sign
from booking_reconciler.domain.entities.external_event import Provider


def build_calendly_payload(event: str, booking_id: str, invitee_uri: str) -> dict[str, Any]:
    now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    start = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() + 3 * 86400))
    end = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() + 3 * 86400 + 3600))
    payload: dict[str, Any] = {
        "uri": invitee_uri,
        "email": "client@example.com",
        "name": "Test Client",
        "timezone": "UTC",
        "scheduled_event": {
            "uri": "https://api.calendly.com/scheduled_events/TEST",
            "start_time": start,
            "end_time": end,
        },
        "tracking": {"utm_content": booking_id},
    }
    if event == "invitee.canceled":
        payload["cancellation"] = {"canceler_type": "invitee", "reason": "Test cancellation"}
    if event.startswith("invitee_no_show"):
        payload = {"invitee": invitee_uri}
    return {"event": event, "created_at": now, "payload": payload}


def build_stripe_payload(event: str, booking_id: str, amount: int, currency: str) -> dict[str, Any]:
    now = int(time.time())
    if event.startswith("checkout.session"):
        obj: dict[str, Any] = {
            "id": f"cs_test_{now}",
            "object": "checkout.session",
            "amount_total": amount,
            "currency": currency,
            "payment_intent": f"pi_test_{booking_id}",
            "client_reference_id": booking_id,
            "metadata": {"booking_id": booking_id},
        }
    elif event == "charge.refunded":
        obj = {
            "id": f"ch_test_{now}",
            "object": "charge",
            "amount_refunded": amount,
            "currency": currency,
            "payment_intent": f"pi_test_{booking_id}",
            "metadata": {"booking_id": booking_id},
        }
    else:
        obj = {
            "id": f"pi_test_{booking_id}",
            "object": "payment_intent",
            "amount": amount,
            "currency": currency,
            "metadata": {"booking_id": booking_id},
        }
    return {"id": f"evt_test_{now}", "type": event, "created": now, "data": {"object": obj}}


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a signed test webhook to the reconciler")
    parser.add_argument("provider", choices=[p.value for p in Provider])
    parser.add_argument("--event", default=None, help="e.g. invitee.created, checkout.session.completed")
    parser.add_argument("--booking-id", required=True)
    parser.add_argument("--invitee-uri", default="https://api.calendly.com/invitees/TEST")
    parser.add_argument("--amount", type=int, default=5000)
    parser.add_argument("--currency", default="usd")
    parser.add_argument("--secret", default="", help="Signing secret for the provider")
    parser.add_argument("--base-url", default="http://127.0.0.1:8001")
    args = parser.parse_args()

    provider = Provider(args.provider)
    if provider == Provider.CALENDLY:
        payload = build_calendly_payload(args.event or "invitee.created", args.booking_id, args.invitee_uri)
    else:
        payload = build_stripe_payload(
            args.event or "checkout.session.completed", args.booking_id, args.amount, args.currency
        )
    body = json.dumps(payload).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    if args.secret:
        headers[SIGNATURE_HEADERS[provider]] = sign(args.secret, body, int(time.time()))

    url = f"{args.base_url}/webhooks/{provider.value}"
    try:
        resp = httpx.post(url, content=body, headers=headers, timeout=10.0)
    except ConnectError:
        print("Connection refused. Is the FastAPI server running?")
        print("Try: uvicorn booking_reconciler.main:app --reload --port 8001")
        return

    print(resp.status_code)
    if resp.text:
        print(resp.text)


if __name__ == "__main__":
    main()
