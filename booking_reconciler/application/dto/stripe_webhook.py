from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class StripeObjectDTO(BaseModel):
    id: str | None = None
    object: str | None = None
    status: str | None = None
    amount: int | None = None
    amount_total: int | None = None
    amount_refunded: int | None = None
    currency: str | None = None
    # expanded objects arrive as dicts
    payment_intent: str | dict[str, Any] | None = None
    client_reference_id: str | None = None
    metadata: dict[str, Any] | None = None

    def payment_intent_id(self) -> str | None:
        if isinstance(self.payment_intent, dict):
            return self.payment_intent.get("id")
        return self.payment_intent

    def booking_reference(self) -> str | None:
        metadata = self.metadata or {}
        # checkout sessions created by the web app carry `bookingId`
        ref = metadata.get("booking_id") or metadata.get("bookingId") or self.client_reference_id
        return str(ref) if ref else None


class StripeEventDataDTO(BaseModel):
    object: StripeObjectDTO = Field(default_factory=StripeObjectDTO)


class StripeWebhookDTO(BaseModel):
    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: StripeEventDataDTO = Field(default_factory=StripeEventDataDTO)
