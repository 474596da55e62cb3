from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class Provider(str, Enum):
    CALENDLY = "calendly"
    STRIPE = "stripe"


class EventKind(str, Enum):
    INVITEE_CREATED = "invitee_created"
    INVITEE_RESCHEDULED = "invitee_rescheduled"
    INVITEE_CANCELED = "invitee_canceled"
    NO_SHOW_CREATED = "no_show_created"
    NO_SHOW_DELETED = "no_show_deleted"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_COMPLETED = "refund_completed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ExternalEvent:
    provider: Provider
    kind: EventKind
    external_event_id: str
    subject_key: str | None
    occurred_at: datetime
    payload_digest: str
    raw_type: str
    booking_reference: str | None = None
    previous_subject_key: str | None = None  # old invitee on a reschedule
    amount: int | None = None
    currency: str | None = None
    payment_intent_id: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)
