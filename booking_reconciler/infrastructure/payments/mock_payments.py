from __future__ import annotations

import logging
from typing import Mapping

from booking_reconciler.application.ports.payment_gateway import PaymentGatewayPort


class MockPaymentGateway(PaymentGatewayPort):
    def __init__(self) -> None:
        self.refunds: dict[str, dict[str, object]] = {}
        self._logger = logging.getLogger(__name__)

    def refund(
        self,
        payment_intent_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        # same idempotency key returns the same refund, like Stripe does
        existing = self.refunds.get(idempotency_key)
        if existing is not None:
            return str(existing["id"])
        refund_id = f"re_mock_{len(self.refunds) + 1}"
        self.refunds[idempotency_key] = {
            "id": refund_id,
            "payment_intent": payment_intent_id,
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata or {}),
        }
        self._logger.info("Mock refund issued", extra={"payment_intent_id": payment_intent_id, "amount": amount})
        return refund_id
