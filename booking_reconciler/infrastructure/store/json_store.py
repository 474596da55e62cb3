from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from booking_reconciler.application.exceptions import PersistenceError
from booking_reconciler.domain.entities.booking import AuditEntry, Booking, BookingStatus
from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.domain.entities.processed_event import EventOutcome, ProcessedEventRecord
from booking_reconciler.infrastructure.store.memory_store import MemoryBookingStore, MemoryEventLedger, _utcnow


logger = logging.getLogger(__name__)


class JsonBookingStore(MemoryBookingStore):
    """
    File-per-booking store for local development.

    Bookings are loaded into the in-memory indexes at start-up; every accepted
    write is flushed to disk (temp file + atomic rename) before the indexes move,
    so a failed write leaves both disk and memory at the previous version.
    """

    def __init__(self, data_dir: str = "./data/bookings", clock: Callable[[], datetime] = _utcnow) -> None:
        super().__init__(clock=clock)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        for file_path in sorted(self._data_dir.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    self._index(_deserialize_booking(json.load(f)))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.error("Skipping unreadable booking file", extra={"reason": str(e), "path": str(file_path)})

    def _persist(self, booking: Booking) -> None:
        _atomic_write(self._data_dir / f"{booking.id}.json", _serialize_booking(booking))


class JsonEventLedger(MemoryEventLedger):
    def __init__(
        self,
        data_dir: str = "./data/ledger",
        clock: Callable[[], datetime] = _utcnow,
        pending_ttl_seconds: float = 60.0,
    ) -> None:
        super().__init__(clock=clock, pending_ttl_seconds=pending_ttl_seconds)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _get_file_path(self, key: tuple[Provider, str]) -> Path:
        # event ids may contain URIs; hash them into a safe file name
        provider, external_event_id = key
        digest = hashlib.sha256(external_event_id.encode("utf-8")).hexdigest()
        return self._data_dir / f"{provider.value}-{digest}.json"

    def _load(self) -> None:
        for file_path in sorted(self._data_dir.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                record = _deserialize_record(data["record"])
                key = (record.provider, record.external_event_id)
                self._records[key] = record
                self._duplicates[key] = [_deserialize_record(d) for d in data.get("duplicates", [])]
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.error("Skipping unreadable ledger file", extra={"reason": str(e), "path": str(file_path)})

    def _persist(
        self,
        key: tuple[Provider, str],
        record: ProcessedEventRecord | None,
        duplicates: list[ProcessedEventRecord],
    ) -> None:
        file_path = self._get_file_path(key)
        if record is None:
            try:
                file_path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Failed to remove {file_path.name}: {e}") from e
            return
        _atomic_write(
            file_path,
            {
                "record": _serialize_record(record),
                "duplicates": [_serialize_record(d) for d in duplicates],
            },
        )


def _atomic_write(file_path: Path, data: dict[str, Any]) -> None:
    temp_path = file_path.with_suffix(".json.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        temp_path.replace(file_path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise PersistenceError(f"Failed to write {file_path.name}: {e}") from e


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _serialize_booking(booking: Booking) -> dict[str, Any]:
    return {
        "id": booking.id,
        "builder_id": booking.builder_id,
        "session_type_id": booking.session_type_id,
        "status": booking.status.value,
        "version": booking.version,
        "client_id": booking.client_id,
        "client_email": booking.client_email,
        "client_name": booking.client_name,
        "start_time": _iso(booking.start_time),
        "end_time": _iso(booking.end_time),
        "timezone": booking.timezone,
        "amount": booking.amount,
        "currency": booking.currency,
        "external_scheduling_id": booking.external_scheduling_id,
        "external_payment_id": booking.external_payment_id,
        "external_payment_intent_id": booking.external_payment_intent_id,
        "amount_paid": booking.amount_paid,
        "refund_pending": booking.refund_pending,
        "refund_amount": booking.refund_amount,
        "cancellation_reason": booking.cancellation_reason,
        "cancelled_by": booking.cancelled_by,
        "audit_trail": [
            {
                "timestamp": _iso(entry.timestamp),
                "from_status": entry.from_status.value,
                "to_status": entry.to_status.value,
                "triggering_event_id": entry.triggering_event_id,
            }
            for entry in booking.audit_trail
        ],
        "created_at": _iso(booking.created_at),
        "updated_at": _iso(booking.updated_at),
    }


def _deserialize_booking(data: dict[str, Any]) -> Booking:
    return Booking(
        id=data["id"],
        builder_id=data["builder_id"],
        session_type_id=data["session_type_id"],
        status=BookingStatus(data["status"]),
        version=int(data["version"]),
        client_id=data.get("client_id"),
        client_email=data.get("client_email"),
        client_name=data.get("client_name"),
        start_time=_from_iso(data.get("start_time")),
        end_time=_from_iso(data.get("end_time")),
        timezone=data.get("timezone"),
        amount=data.get("amount"),
        currency=data.get("currency"),
        external_scheduling_id=data.get("external_scheduling_id"),
        external_payment_id=data.get("external_payment_id"),
        external_payment_intent_id=data.get("external_payment_intent_id"),
        amount_paid=data.get("amount_paid"),
        refund_pending=bool(data.get("refund_pending", False)),
        refund_amount=data.get("refund_amount"),
        cancellation_reason=data.get("cancellation_reason"),
        cancelled_by=data.get("cancelled_by"),
        audit_trail=tuple(
            AuditEntry(
                timestamp=datetime.fromisoformat(entry["timestamp"]),
                from_status=BookingStatus(entry["from_status"]),
                to_status=BookingStatus(entry["to_status"]),
                triggering_event_id=entry["triggering_event_id"],
            )
            for entry in data.get("audit_trail", [])
        ),
        created_at=_from_iso(data.get("created_at")),
        updated_at=_from_iso(data.get("updated_at")),
    )


def _serialize_record(record: ProcessedEventRecord) -> dict[str, Any]:
    return {
        "provider": record.provider.value,
        "external_event_id": record.external_event_id,
        "processed_at": _iso(record.processed_at),
        "outcome": record.outcome.value,
        "booking_id": record.booking_id,
        "payload_digest": record.payload_digest,
        "event_kind": record.event_kind,
    }


def _deserialize_record(data: dict[str, Any]) -> ProcessedEventRecord:
    return ProcessedEventRecord(
        provider=Provider(data["provider"]),
        external_event_id=data["external_event_id"],
        processed_at=datetime.fromisoformat(data["processed_at"]),
        outcome=EventOutcome(data["outcome"]),
        booking_id=data.get("booking_id"),
        payload_digest=data.get("payload_digest"),
        event_kind=data.get("event_kind"),
    )
