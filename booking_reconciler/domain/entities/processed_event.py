from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from booking_reconciler.domain.entities.external_event import Provider


class EventOutcome(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    IGNORED_DUPLICATE = "ignored-duplicate"
    IGNORED_STALE = "ignored-stale"
    IGNORED_UNSUPPORTED = "ignored-unsupported"
    NEEDS_RECONCILIATION = "needs-reconciliation"


@dataclass(frozen=True)
class ProcessedEventRecord:
    provider: Provider
    external_event_id: str
    processed_at: datetime
    outcome: EventOutcome = EventOutcome.PENDING
    booking_id: str | None = None
    payload_digest: str | None = None
    event_kind: str | None = None
