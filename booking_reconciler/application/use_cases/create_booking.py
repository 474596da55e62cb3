from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from booking_reconciler.application.ports.booking_store import BookingStorePort
from booking_reconciler.domain.entities.booking import Booking, BookingDraft


class CreateBookingUseCase:
    def __init__(self, store: BookingStorePort) -> None:
        self._store = store
        self._logger = logging.getLogger(__name__)

    def execute(self, draft: BookingDraft) -> Booking:
        """
        Persist a new PENDING_SCHEDULE booking for a client starting a booking attempt.

        The returned id is what the client passes on to the scheduling and checkout
        pages so later webhooks can be correlated with this booking.

        Raises:
            ValueError: the draft is inconsistent
        """
        if not draft.builder_id or not draft.session_type_id:
            raise ValueError("builder_id and session_type_id are required")
        if draft.amount is not None and draft.amount < 0:
            raise ValueError("amount must be zero or positive")
        if draft.amount:
            if not draft.currency or len(draft.currency) != 3 or not draft.currency.isalpha():
                raise ValueError("currency must be a 3-letter code for a priced session")

        start_time = _as_utc(draft.start_time)
        end_time = _as_utc(draft.end_time)
        if start_time and end_time and end_time <= start_time:
            raise ValueError("end_time must be after start_time")

        booking = self._store.create(replace(draft, start_time=start_time, end_time=end_time))
        self._logger.info(
            "Booking draft created",
            extra={"booking_id": booking.id, "status": booking.status.value, "amount": booking.amount},
        )
        return booking


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
