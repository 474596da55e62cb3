from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping


class PaymentGatewayPort(ABC):
    @abstractmethod
    def refund(
        self,
        payment_intent_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Refund `amount` minor units. Returns the provider refund id. Raises DispatchError."""
        raise NotImplementedError
