from __future__ import annotations

from typing import Mapping

from booking_reconciler.application.ports.payment_gateway import PaymentGatewayPort
from booking_reconciler.infrastructure.payments.stripe_refund_client import StripeRefundClient


class StripePaymentGateway(PaymentGatewayPort):
    def __init__(self, client: StripeRefundClient) -> None:
        self._client = client

    def refund(
        self,
        payment_intent_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        # Stripe refunds in the charge currency; `currency` is only carried for logging upstream
        refund = self._client.create_refund(
            payment_intent_id=payment_intent_id,
            amount=amount,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )
        return str(refund.get("id", ""))
