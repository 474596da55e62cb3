from datetime import datetime

from pydantic import BaseModel, Field


class CreateBookingRequestSchema(BaseModel):
    builder_id: str = Field(min_length=1)
    session_type_id: str = Field(min_length=1)
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    amount: int | None = Field(default=None, ge=0)
    currency: str | None = None
    client_id: str | None = None
    client_email: str | None = None
    client_name: str | None = None


class RecordPaymentSessionRequestSchema(BaseModel):
    checkout_session_id: str = Field(min_length=1)
    payment_intent_id: str | None = None


class AuditEntrySchema(BaseModel):
    timestamp: datetime
    from_status: str
    to_status: str
    triggering_event_id: str


class BookingResponseSchema(BaseModel):
    id: str
    builder_id: str
    session_type_id: str
    status: str
    version: int
    client_id: str | None = None
    client_email: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    amount: int | None = None
    currency: str | None = None
    amount_paid: int | None = None
    refund_pending: bool = False
    refund_amount: int | None = None
    cancellation_reason: str | None = None
    audit_trail: list[AuditEntrySchema] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
