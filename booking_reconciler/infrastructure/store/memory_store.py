from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from booking_reconciler.application.exceptions import (
    ConcurrencyConflict,
    DuplicateCorrelationKey,
    PersistenceError,
)
from booking_reconciler.application.ports.booking_store import BookingMutation, BookingStorePort
from booking_reconciler.application.ports.event_ledger import EventLedgerPort
from booking_reconciler.application.ports.followup_store import DeadLetterStorePort, ReconciliationQueuePort
from booking_reconciler.domain.entities.booking import Booking, BookingDraft
from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.domain.entities.processed_event import EventOutcome, ProcessedEventRecord
from booking_reconciler.domain.entities.side_effect import DeadLetterRecord, ReconciliationItem


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryBookingStore(BookingStorePort):
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._bookings: dict[str, Booking] = {}
        self._by_scheduling_id: dict[str, str] = {}
        self._by_payment_id: dict[str, str] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create(self, draft: BookingDraft) -> Booking:
        booking = Booking.from_draft(uuid.uuid4().hex, draft, self._clock())
        with self._lock:
            self._write(booking, previous=None)
        return booking

    def find_by_id(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    def find_by_external_scheduling_id(self, scheduling_id: str) -> Booking | None:
        booking_id = self._by_scheduling_id.get(scheduling_id)
        return self._bookings.get(booking_id) if booking_id else None

    def find_by_external_payment_id(self, payment_id: str) -> Booking | None:
        booking_id = self._by_payment_id.get(payment_id)
        return self._bookings.get(booking_id) if booking_id else None

    def compare_and_swap(self, booking_id: str, expected_version: int, mutation: BookingMutation) -> Booking:
        with self._lock:
            stored = self._bookings.get(booking_id)
            if stored is None:
                raise PersistenceError(f"Booking {booking_id} does not exist")
            if stored.version != expected_version:
                raise ConcurrencyConflict(booking_id, expected_version, stored.version)

            updated = mutation(stored)
            if updated.id != booking_id or updated.version != expected_version + 1:
                raise PersistenceError(f"Mutation for booking {booking_id} must advance the version by one")
            self._write(updated, previous=stored)
            return updated

    def all(self) -> list[Booking]:
        return list(self._bookings.values())

    def _write(self, booking: Booking, previous: Booking | None) -> None:
        """Check uniqueness, persist, then update indexes. Caller holds the lock."""
        scheduling_owner = (
            self._by_scheduling_id.get(booking.external_scheduling_id) if booking.external_scheduling_id else None
        )
        if scheduling_owner and scheduling_owner != booking.id:
            raise DuplicateCorrelationKey(
                f"Scheduling id {booking.external_scheduling_id} already belongs to booking {scheduling_owner}"
            )
        for payment_key in _payment_keys(booking):
            payment_owner = self._by_payment_id.get(payment_key)
            if payment_owner and payment_owner != booking.id:
                raise DuplicateCorrelationKey(
                    f"Payment id {payment_key} already belongs to booking {payment_owner}"
                )

        self._persist(booking)

        if previous is not None:
            if previous.external_scheduling_id and previous.external_scheduling_id != booking.external_scheduling_id:
                self._by_scheduling_id.pop(previous.external_scheduling_id, None)
            for payment_key in _payment_keys(previous) - _payment_keys(booking):
                self._by_payment_id.pop(payment_key, None)
        self._index(booking)

    def _index(self, booking: Booking) -> None:
        self._bookings[booking.id] = booking
        if booking.external_scheduling_id:
            self._by_scheduling_id[booking.external_scheduling_id] = booking.id
        for payment_key in _payment_keys(booking):
            self._by_payment_id[payment_key] = booking.id

    def _persist(self, booking: Booking) -> None:
        pass


def _payment_keys(booking: Booking) -> set[str]:
    return {key for key in (booking.external_payment_id, booking.external_payment_intent_id) if key}


class MemoryEventLedger(EventLedgerPort):
    def __init__(self, clock: Callable[[], datetime] = _utcnow, pending_ttl_seconds: float = 60.0) -> None:
        self._records: dict[tuple[Provider, str], ProcessedEventRecord] = {}
        self._duplicates: dict[tuple[Provider, str], list[ProcessedEventRecord]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        # a reservation older than this belongs to a worker that died mid-flight
        self._pending_ttl = timedelta(seconds=pending_ttl_seconds)

    def reserve(
        self,
        provider: Provider,
        external_event_id: str,
        payload_digest: str | None = None,
        event_kind: str | None = None,
    ) -> ProcessedEventRecord | None:
        key = (provider, external_event_id)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None and not self._is_abandoned(existing):
                return existing
            record = ProcessedEventRecord(
                provider=provider,
                external_event_id=external_event_id,
                processed_at=self._clock(),
                payload_digest=payload_digest,
                event_kind=event_kind,
            )
            self._persist(key, record, self._duplicates.get(key, []))
            self._records[key] = record
            return None

    def confirm(
        self,
        provider: Provider,
        external_event_id: str,
        outcome: EventOutcome,
        booking_id: str | None = None,
    ) -> ProcessedEventRecord:
        key = (provider, external_event_id)
        with self._lock:
            record = self._records.get(key) or ProcessedEventRecord(
                provider=provider,
                external_event_id=external_event_id,
                processed_at=self._clock(),
            )
            record = replace(record, outcome=outcome, booking_id=booking_id, processed_at=self._clock())
            self._persist(key, record, self._duplicates.get(key, []))
            self._records[key] = record
            return record

    def release(self, provider: Provider, external_event_id: str) -> None:
        key = (provider, external_event_id)
        with self._lock:
            record = self._records.get(key)
            if record is not None and record.outcome == EventOutcome.PENDING:
                self._persist(key, None, self._duplicates.get(key, []))
                del self._records[key]

    def record_duplicate(self, provider: Provider, external_event_id: str) -> ProcessedEventRecord:
        key = (provider, external_event_id)
        with self._lock:
            canonical = self._records.get(key)
            duplicate = ProcessedEventRecord(
                provider=provider,
                external_event_id=external_event_id,
                processed_at=self._clock(),
                outcome=EventOutcome.IGNORED_DUPLICATE,
                booking_id=canonical.booking_id if canonical else None,
                payload_digest=canonical.payload_digest if canonical else None,
                event_kind=canonical.event_kind if canonical else None,
            )
            duplicates = self._duplicates.get(key, []) + [duplicate]
            self._persist(key, canonical, duplicates)
            self._duplicates[key] = duplicates
            return duplicate

    def get(self, provider: Provider, external_event_id: str) -> ProcessedEventRecord | None:
        return self._records.get((provider, external_event_id))

    def _is_abandoned(self, record: ProcessedEventRecord) -> bool:
        return record.outcome == EventOutcome.PENDING and self._clock() - record.processed_at > self._pending_ttl

    def history(self, provider: Provider, external_event_id: str) -> list[ProcessedEventRecord]:
        key = (provider, external_event_id)
        records = [self._records[key]] if key in self._records else []
        return records + list(self._duplicates.get(key, []))

    def _persist(
        self,
        key: tuple[Provider, str],
        record: ProcessedEventRecord | None,
        duplicates: list[ProcessedEventRecord],
    ) -> None:
        """Write the entry for `key` before memory changes. Caller holds the lock."""


class MemoryDeadLetterStore(DeadLetterStorePort):
    def __init__(self) -> None:
        self._records: list[DeadLetterRecord] = []
        self._lock = threading.Lock()

    def add(self, record: DeadLetterRecord) -> None:
        with self._lock:
            self._records.append(record)

    def all(self) -> list[DeadLetterRecord]:
        return list(self._records)


class MemoryReconciliationQueue(ReconciliationQueuePort):
    def __init__(self) -> None:
        self._items: list[ReconciliationItem] = []
        self._lock = threading.Lock()

    def flag(self, item: ReconciliationItem) -> None:
        with self._lock:
            self._items.append(item)

    def all(self) -> list[ReconciliationItem]:
        return list(self._items)
