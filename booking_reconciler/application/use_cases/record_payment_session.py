from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from booking_reconciler.application.exceptions import ConcurrencyConflict, PersistenceError, TransitionError
from booking_reconciler.application.ports.booking_store import BookingStorePort
from booking_reconciler.domain.entities.booking import AuditEntry, Booking, BookingStatus


PAYABLE_STATUSES = frozenset(
    {BookingStatus.PENDING_SCHEDULE, BookingStatus.SCHEDULED_UNPAID, BookingStatus.PENDING_PAYMENT}
)


class RecordPaymentSessionUseCase:
    def __init__(
        self,
        store: BookingStorePort,
        max_attempts: int = 3,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._max_attempts = max(max_attempts, 1)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    def execute(self, booking_id: str, checkout_session_id: str, payment_intent_id: str | None = None) -> Booking:
        """
        Attach the Stripe checkout session a client was sent to.

        Payment webhooks are then matched on the session id directly. Recording
        the same session twice is a no-op; a new session replaces an abandoned one.

        Raises:
            ValueError: blank session id
            LookupError: unknown booking
            TransitionError: the booking is free or no longer awaiting payment
            DuplicateCorrelationKey: the session already belongs to another booking
        """
        if not checkout_session_id:
            raise ValueError("checkout_session_id is required")

        for attempt in range(1, self._max_attempts + 1):
            booking = self._store.find_by_id(booking_id)
            if booking is None:
                raise LookupError(f"Booking {booking_id} not found")
            if booking.is_free:
                raise TransitionError(f"Booking {booking_id} is free and takes no payment")
            if booking.status not in PAYABLE_STATUSES:
                raise TransitionError(f"Booking {booking_id} is {booking.status.value}; payment cannot start")
            if booking.external_payment_id == checkout_session_id:
                return booking

            try:
                saved = self._store.compare_and_swap(
                    booking.id,
                    booking.version,
                    lambda stored: _with_session(stored, checkout_session_id, payment_intent_id, self._clock()),
                )
            except ConcurrencyConflict:
                if attempt >= self._max_attempts:
                    raise
                continue

            self._logger.info(
                "Checkout session recorded",
                extra={"booking_id": saved.id, "status": saved.status.value, "checkout_session_id": checkout_session_id},
            )
            return saved

        raise PersistenceError("Checkout session retry loop exited without a result")


def _with_session(booking: Booking, session_id: str, payment_intent_id: str | None, at: datetime) -> Booking:
    entry = AuditEntry(
        timestamp=at,
        from_status=booking.status,
        to_status=booking.status,
        triggering_event_id=f"checkout:{session_id}",
    )
    return replace(
        booking,
        version=booking.version + 1,
        external_payment_id=session_id,
        external_payment_intent_id=payment_intent_id,
        audit_trail=booking.audit_trail + (entry,),
        updated_at=at,
    )
