from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from booking_reconciler.domain.entities.booking import Booking, BookingDraft


BookingMutation = Callable[[Booking], Booking]


class BookingStorePort(ABC):
    @abstractmethod
    def create(self, draft: BookingDraft) -> Booking:
        """Persist a new booking in PENDING_SCHEDULE at version 1."""
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, booking_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_external_scheduling_id(self, scheduling_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def find_by_external_payment_id(self, payment_id: str) -> Booking | None:
        """Match either the checkout session id or the payment intent id."""
        raise NotImplementedError

    @abstractmethod
    def compare_and_swap(
        self,
        booking_id: str,
        expected_version: int,
        mutation: BookingMutation,
    ) -> Booking:
        """
        Apply `mutation` to the stored booking if its version equals `expected_version`.

        The check and the write happen atomically. The mutated booking must carry
        version `expected_version + 1`.

        Raises:
            ConcurrencyConflict: stored version differs from `expected_version`
            DuplicateCorrelationKey: an external id is owned by another booking
            PersistenceError: booking does not exist or the write failed
        """
        raise NotImplementedError
