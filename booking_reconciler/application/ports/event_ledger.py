from __future__ import annotations

from abc import ABC, abstractmethod

from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.domain.entities.processed_event import EventOutcome, ProcessedEventRecord


class EventLedgerPort(ABC):
    @abstractmethod
    def reserve(
        self,
        provider: Provider,
        external_event_id: str,
        payload_digest: str | None = None,
        event_kind: str | None = None,
    ) -> ProcessedEventRecord | None:
        """
        Tentatively claim (provider, external_event_id).

        Returns None when the claim succeeded, otherwise the record that already
        holds the key (pending or final). Uniqueness is enforced by the store.
        """
        raise NotImplementedError

    @abstractmethod
    def confirm(
        self,
        provider: Provider,
        external_event_id: str,
        outcome: EventOutcome,
        booking_id: str | None = None,
    ) -> ProcessedEventRecord:
        raise NotImplementedError

    @abstractmethod
    def release(self, provider: Provider, external_event_id: str) -> None:
        """Drop a pending reservation so a redelivery can run again."""
        raise NotImplementedError

    @abstractmethod
    def record_duplicate(self, provider: Provider, external_event_id: str) -> ProcessedEventRecord:
        raise NotImplementedError

    @abstractmethod
    def get(self, provider: Provider, external_event_id: str) -> ProcessedEventRecord | None:
        raise NotImplementedError

    @abstractmethod
    def history(self, provider: Provider, external_event_id: str) -> list[ProcessedEventRecord]:
        """Canonical record followed by every duplicate delivery, oldest first."""
        raise NotImplementedError
