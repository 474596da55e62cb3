from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from booking_reconciler.application.exceptions import (
    AmountMismatch,
    ConcurrencyConflict,
    EventInFlight,
    NoMatchingBooking,
    NormalizationError,
    PersistenceError,
    TransitionError,
    VerificationError,
)
from booking_reconciler.application.ports.booking_store import BookingStorePort
from booking_reconciler.application.ports.event_ledger import EventLedgerPort
from booking_reconciler.application.ports.followup_store import ReconciliationQueuePort
from booking_reconciler.application.use_cases.booking_state_machine import (
    DEFAULT_REFUND_POLICY,
    NON_ACTIONABLE_KINDS,
    RefundPolicy,
    transition,
)
from booking_reconciler.application.use_cases.normalize_event import EventNormalizer
from booking_reconciler.application.utils.retry import backoff_delays
from booking_reconciler.domain.entities.booking import Booking, BookingStatus
from booking_reconciler.domain.entities.external_event import EventKind, ExternalEvent, Provider
from booking_reconciler.domain.entities.processed_event import EventOutcome, ProcessedEventRecord
from booking_reconciler.domain.entities.side_effect import ReconciliationItem, SideEffectIntent
from booking_reconciler.infrastructure.webhooks.signature import SIGNATURE_HEADERS, SignatureVerifier


IntentSink = Callable[[Sequence[SideEffectIntent]], None]

alert_logger = logging.getLogger("booking_reconciler.alerts")


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    outcome: str
    booking_id: str | None = None
    intents: tuple[SideEffectIntent, ...] = ()
    detail: str | None = None


@dataclass(frozen=True)
class _Applied:
    booking_id: str | None
    outcome: EventOutcome
    intents: tuple[SideEffectIntent, ...] = ()
    reason: str = ""


def _discard(_intents: Sequence[SideEffectIntent]) -> None:
    return None


class ReconcileWebhookUseCase:
    def __init__(
        self,
        verifier: SignatureVerifier,
        normalizer: EventNormalizer,
        store: BookingStorePort,
        ledger: EventLedgerPort,
        reconciliation_queue: ReconciliationQueuePort,
        intent_sink: IntentSink = _discard,
        refund_policy: RefundPolicy = DEFAULT_REFUND_POLICY,
        missing_booking_max_attempts: int = 3,
        missing_booking_base_delay: float = 0.25,
        concurrency_max_attempts: int = 5,
        timeout_budget_seconds: float = 4.0,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._verifier = verifier
        self._normalizer = normalizer
        self._store = store
        self._ledger = ledger
        self._queue = reconciliation_queue
        self._intent_sink = intent_sink
        self._refund_policy = refund_policy
        self._missing_max_attempts = max(missing_booking_max_attempts, 1)
        self._missing_base_delay = missing_booking_base_delay
        self._concurrency_max_attempts = max(concurrency_max_attempts, 1)
        self._timeout_budget = timeout_budget_seconds
        self._sleep = sleep
        self._monotonic = monotonic
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    def handle_webhook(
        self,
        provider: Provider,
        raw_body: bytes,
        headers: Mapping[str, str],
        enqueue: IntentSink | None = None,
    ) -> WebhookResult:
        """
        Verify, normalize and apply one webhook delivery.

        The returned status code follows the providers' redelivery contract:
        2xx stops redelivery, anything else asks the provider to try again.
        Side effects are handed to `enqueue` (or the configured sink) after the
        booking change is committed; this method never waits for them.
        """
        deadline = self._monotonic() + self._timeout_budget

        try:
            self._verifier.verify(provider, raw_body, _header(headers, SIGNATURE_HEADERS[provider]))
        except VerificationError as e:
            self._logger.warning(
                "Webhook signature rejected",
                extra={"provider": provider.value, "reason": e.code},
            )
            return WebhookResult(status_code=401, outcome="rejected", detail=e.code)

        try:
            event = self._normalizer.normalize(provider, raw_body)
        except NormalizationError as e:
            _alert("malformed_payload", "Signed webhook payload could not be normalized",
                   provider=provider.value, reason=str(e))
            return WebhookResult(status_code=400, outcome="rejected", detail=str(e))

        context = {
            "provider": provider.value,
            "event_id": event.external_event_id,
            "event_kind": event.kind.value,
        }

        try:
            existing = self._claim(event)
        except EventInFlight as e:
            self._logger.info("Event already in flight", extra=context)
            return WebhookResult(status_code=409, outcome="in-flight", detail=str(e))
        if existing is not None:
            self._ledger.record_duplicate(provider, event.external_event_id)
            self._logger.info("Duplicate webhook ignored", extra={**context, "outcome": existing.outcome.value})
            return WebhookResult(
                status_code=200,
                outcome=EventOutcome.IGNORED_DUPLICATE.value,
                booking_id=existing.booking_id,
            )

        try:
            applied = self._apply(event, deadline)
        except (NoMatchingBooking, ConcurrencyConflict) as e:
            return self._defer(event, e)
        except AmountMismatch as e:
            self._ledger.release(provider, event.external_event_id)
            _alert("amount_mismatch", "Payment amount does not match booking", **context,
                   reason=str(e))
            return WebhookResult(status_code=422, outcome="rejected", detail=str(e))
        except TransitionError as e:
            self._ledger.release(provider, event.external_event_id)
            _alert("invalid_transition", "Event does not apply to booking state", **context, reason=str(e))
            return WebhookResult(status_code=409, outcome="rejected", detail=str(e))
        except PersistenceError as e:
            self._ledger.release(provider, event.external_event_id)
            self._logger.error("Booking persistence failed", extra={**context, "error": str(e)})
            return WebhookResult(status_code=500, outcome="error", detail="persistence failure")
        except Exception:
            self._ledger.release(provider, event.external_event_id)
            raise

        self._ledger.confirm(provider, event.external_event_id, applied.outcome, applied.booking_id)
        self._logger.info(
            "Webhook reconciled",
            extra={**context, "booking_id": applied.booking_id, "outcome": applied.outcome.value,
                   "reason": applied.reason},
        )
        if applied.intents:
            (enqueue or self._intent_sink)(applied.intents)

        return WebhookResult(
            status_code=200,
            outcome=applied.outcome.value,
            booking_id=applied.booking_id,
            intents=applied.intents,
            detail=applied.reason or None,
        )

    def _claim(self, event: ExternalEvent) -> ProcessedEventRecord | None:
        existing = self._ledger.reserve(
            event.provider, event.external_event_id, event.payload_digest, event.kind.value
        )
        if existing is not None and existing.outcome == EventOutcome.PENDING:
            raise EventInFlight(f"{event.provider.value} event {event.external_event_id} is being processed")
        return existing

    def _apply(self, event: ExternalEvent, deadline: float) -> _Applied:
        if event.kind == EventKind.IGNORED:
            return _Applied(booking_id=None, outcome=EventOutcome.IGNORED_UNSUPPORTED, reason=event.raw_type)

        if event.kind in NON_ACTIONABLE_KINDS:
            booking = self._resolve(event)
            if booking is None:
                return _Applied(booking_id=None, outcome=EventOutcome.IGNORED_STALE, reason="no booking to update")
        else:
            booking = self._resolve_with_retry(event, deadline)

        for attempt in range(1, self._concurrency_max_attempts + 1):
            result = transition(booking, event, self._refund_policy)
            if not result.changed:
                self._check_stranded_payment(result.next, event)
                return _Applied(booking_id=result.next.id, outcome=EventOutcome.IGNORED_STALE, reason=result.reason)

            try:
                saved = self._store.compare_and_swap(
                    booking.id, booking.version, lambda _stored, next_booking=result.next: next_booking
                )
            except ConcurrencyConflict:
                if attempt >= self._concurrency_max_attempts:
                    raise
                self._logger.info(
                    "Booking changed underneath us; reloading",
                    extra={"booking_id": booking.id, "attempt": attempt, "event_id": event.external_event_id},
                )
                booking = self._store.find_by_id(booking.id)
                if booking is None:
                    raise PersistenceError(f"Booking disappeared during reconciliation: {event.external_event_id}")
                continue

            return _Applied(
                booking_id=saved.id,
                outcome=EventOutcome.APPLIED,
                intents=result.intents,
                reason=result.reason,
            )

        raise PersistenceError("Concurrency retry loop exited without a result")

    def _resolve_with_retry(self, event: ExternalEvent, deadline: float) -> Booking | None:
        """
        Look the booking up, backing off while the client-side draft may still be committing.

        Returns None when nothing matched within the attempt and time budget; the
        state machine turns that into NoMatchingBooking.
        """
        delays = backoff_delays(self._missing_max_attempts, self._missing_base_delay, jitter=False)
        for attempt in range(self._missing_max_attempts):
            booking = self._resolve(event)
            if booking is not None:
                return booking
            if attempt >= len(delays):
                break
            delay = delays[attempt]
            if self._monotonic() + delay > deadline:
                self._logger.info("Timeout budget exhausted while waiting for booking",
                                  extra={"event_id": event.external_event_id})
                break
            self._logger.info(
                "No booking yet for event; backing off",
                extra={"event_id": event.external_event_id, "attempt": attempt + 1},
            )
            self._sleep(delay)
        return None

    def _resolve(self, event: ExternalEvent) -> Booking | None:
        if event.provider == Provider.CALENDLY:
            find_by_key = self._store.find_by_external_scheduling_id
            candidate_keys = (event.subject_key, event.previous_subject_key)
        else:
            find_by_key = self._store.find_by_external_payment_id
            candidate_keys = (event.subject_key, event.payment_intent_id)

        for key in candidate_keys:
            if key:
                booking = find_by_key(key)
                if booking is not None:
                    return booking
        if event.booking_reference:
            return self._store.find_by_id(event.booking_reference)
        return None

    def _defer(self, event: ExternalEvent, error: Exception) -> WebhookResult:
        reason = "no_matching_booking" if isinstance(error, NoMatchingBooking) else "concurrency_conflict"
        booking_id = error.booking_id if isinstance(error, ConcurrencyConflict) else None
        self._ledger.confirm(
            event.provider, event.external_event_id, EventOutcome.NEEDS_RECONCILIATION, booking_id
        )
        self._flag(event, reason, booking_id)
        return WebhookResult(
            status_code=202,
            outcome=EventOutcome.NEEDS_RECONCILIATION.value,
            booking_id=booking_id,
            detail=reason,
        )

    def _check_stranded_payment(self, booking: Booking, event: ExternalEvent) -> None:
        # funds captured after the booking was cancelled need a manual refund
        if (
            event.kind == EventKind.PAYMENT_COMPLETED
            and booking.status == BookingStatus.CANCELLED
            and not booking.amount_paid
        ):
            self._flag(event, "payment_captured_after_cancellation", booking.id)

    def _flag(self, event: ExternalEvent, reason: str, booking_id: str | None) -> None:
        self._queue.flag(
            ReconciliationItem(
                provider=event.provider,
                external_event_id=event.external_event_id,
                reason=reason,
                flagged_at=self._clock(),
                subject_key=event.subject_key,
                booking_reference=event.booking_reference,
                booking_id=booking_id,
                payload_digest=event.payload_digest,
            )
        )
        _alert(reason, "Webhook flagged for manual reconciliation",
               provider=event.provider.value, event_id=event.external_event_id, booking_id=booking_id)


def _alert(code: str, message: str, **context: object) -> None:
    alert_logger.error(message, extra={"alert": code, **context})


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None
