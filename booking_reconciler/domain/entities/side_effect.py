from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from booking_reconciler.domain.entities.external_event import Provider


class IntentKind(str, Enum):
    SEND_CONFIRMATION_EMAIL = "SEND_CONFIRMATION_EMAIL"
    SEND_CANCELLATION_EMAIL = "SEND_CANCELLATION_EMAIL"
    INITIATE_REFUND = "INITIATE_REFUND"
    SEND_NO_SHOW_NOTICE = "SEND_NO_SHOW_NOTICE"


EMAIL_INTENTS = frozenset(
    {
        IntentKind.SEND_CONFIRMATION_EMAIL,
        IntentKind.SEND_CANCELLATION_EMAIL,
        IntentKind.SEND_NO_SHOW_NOTICE,
    }
)


@dataclass(frozen=True)
class SideEffectIntent:
    kind: IntentKind
    booking_id: str
    params: Mapping[str, Any] = field(default_factory=dict)
    idempotency_key: str = ""


@dataclass(frozen=True)
class DeadLetterRecord:
    intent: SideEffectIntent
    attempts: int
    last_error: str
    failed_at: datetime
    financial: bool = False


@dataclass(frozen=True)
class ReconciliationItem:
    provider: Provider
    external_event_id: str
    reason: str
    flagged_at: datetime
    subject_key: str | None = None
    booking_reference: str | None = None
    booking_id: str | None = None
    payload_digest: str | None = None
