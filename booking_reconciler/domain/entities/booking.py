from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class BookingStatus(str, Enum):
    PENDING_SCHEDULE = "PENDING_SCHEDULE"
    SCHEDULED_UNPAID = "SCHEDULED_UNPAID"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    REFUNDED = "REFUNDED"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.NO_SHOW, BookingStatus.REFUNDED}
)


@dataclass(frozen=True)
class AuditEntry:
    timestamp: datetime
    from_status: BookingStatus
    to_status: BookingStatus
    triggering_event_id: str


@dataclass(frozen=True)
class BookingDraft:
    builder_id: str
    session_type_id: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    amount: int | None = None  # minor units; None or 0 means a free session
    currency: str | None = None
    client_id: str | None = None  # None for anonymous bookings
    client_email: str | None = None
    client_name: str | None = None


@dataclass(frozen=True)
class Booking:
    id: str
    builder_id: str
    session_type_id: str
    status: BookingStatus = BookingStatus.PENDING_SCHEDULE
    version: int = 1
    client_id: str | None = None
    client_email: str | None = None
    client_name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    amount: int | None = None
    currency: str | None = None
    external_scheduling_id: str | None = None  # Calendly invitee URI
    external_payment_id: str | None = None  # Stripe checkout session id
    external_payment_intent_id: str | None = None
    amount_paid: int | None = None
    refund_pending: bool = False
    refund_amount: int | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    audit_trail: tuple[AuditEntry, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_draft(cls, booking_id: str, draft: BookingDraft, created_at: datetime) -> "Booking":
        return cls(
            id=booking_id,
            builder_id=draft.builder_id,
            session_type_id=draft.session_type_id,
            client_id=draft.client_id,
            client_email=draft.client_email,
            client_name=draft.client_name,
            start_time=draft.start_time,
            end_time=draft.end_time,
            timezone=draft.timezone,
            amount=draft.amount,
            currency=draft.currency.upper() if draft.currency else None,
            created_at=created_at,
            updated_at=created_at,
        )

    @property
    def is_free(self) -> bool:
        return not self.amount

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
