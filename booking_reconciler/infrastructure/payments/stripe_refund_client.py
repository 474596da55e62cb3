from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from booking_reconciler.application.exceptions import DispatchError


class StripeRefundClient:
    """Stripe refunds over the REST API; form-encoded bodies, secret key as basic-auth user."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com/v1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, auth=(secret_key, ""), timeout=15.0, transport=transport)
        self._logger = logging.getLogger(__name__)

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int,
        idempotency_key: str,
        metadata: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        data: dict[str, str] = {
            "payment_intent": payment_intent_id,
            "amount": str(amount),
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        try:
            resp = self._client.post("/refunds", data=data, headers={"Idempotency-Key": idempotency_key})
        except httpx.TransportError as e:
            raise DispatchError(f"Stripe unreachable: {e}", retryable=True) from e

        if resp.status_code >= 400:
            try:
                error = resp.json().get("error", {})
                error_code = error.get("code")
                error_message = error.get("message") or resp.text
            except ValueError:
                error_code = None
                error_message = resp.text

            self._logger.error(
                "Stripe refund failed",
                extra={
                    "status": resp.status_code,
                    "error_code": error_code,
                    "error_message": error_message,
                    "payment_intent_id": payment_intent_id,
                },
            )
            retryable = resp.status_code == 429 or resp.status_code >= 500
            raise DispatchError(f"Stripe returned {resp.status_code}: {error_message}", retryable=retryable)

        try:
            return resp.json()
        except ValueError as e:
            # the idempotency key makes a repeat return the same refund
            raise DispatchError(f"Stripe returned an unreadable refund body: {e}", retryable=True) from e
