from __future__ import annotations

from abc import ABC, abstractmethod

from booking_reconciler.domain.entities.side_effect import DeadLetterRecord, ReconciliationItem


class DeadLetterStorePort(ABC):
    @abstractmethod
    def add(self, record: DeadLetterRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def all(self) -> list[DeadLetterRecord]:
        raise NotImplementedError


class ReconciliationQueuePort(ABC):
    @abstractmethod
    def flag(self, item: ReconciliationItem) -> None:
        """Queue an event for manual review. Items never expire on their own."""
        raise NotImplementedError

    @abstractmethod
    def all(self) -> list[ReconciliationItem]:
        raise NotImplementedError
