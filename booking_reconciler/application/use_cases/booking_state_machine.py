"""
Booking state machine.

`transition` is a pure function of (booking, event): no I/O and no clock reads,
so a coordinator can re-run it after losing a compare-and-swap race and get the
same answer against the fresh state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from booking_reconciler.application.exceptions import AmountMismatch, NoMatchingBooking, TransitionError
from booking_reconciler.domain.entities.booking import AuditEntry, Booking, BookingStatus
from booking_reconciler.domain.entities.external_event import EventKind, ExternalEvent
from booking_reconciler.domain.entities.side_effect import IntentKind, SideEffectIntent


@dataclass(frozen=True)
class RefundPolicy:
    full_notice_hours: int = 24
    partial_notice_hours: int = 12
    partial_percent: int = 50

    def refund_amount(self, booking: Booking, cancelled_at: datetime, canceler_type: str | None) -> int:
        """Amount (minor units) to give back for a cancellation made at `cancelled_at`."""
        paid = booking.amount_paid or 0
        if paid <= 0:
            return 0
        if canceler_type == "host" or booking.start_time is None:
            return paid
        hours_notice = (_aware(booking.start_time) - _aware(cancelled_at)).total_seconds() / 3600
        if hours_notice >= self.full_notice_hours:
            return paid
        if hours_notice >= self.partial_notice_hours:
            return paid * self.partial_percent // 100
        return 0


DEFAULT_REFUND_POLICY = RefundPolicy()

# kinds that never change a booking; an unmatched one is not worth manual review
NON_ACTIONABLE_KINDS = frozenset({EventKind.IGNORED, EventKind.PAYMENT_FAILED, EventKind.NO_SHOW_DELETED})


@dataclass(frozen=True)
class TransitionResult:
    next: Booking
    intents: tuple[SideEffectIntent, ...] = ()
    changed: bool = False
    reason: str = ""


def transition(
    current: Booking | None,
    event: ExternalEvent,
    refund_policy: RefundPolicy = DEFAULT_REFUND_POLICY,
) -> TransitionResult:
    """
    Compute the next booking state and the side effects it implies.

    Raises:
        NoMatchingBooking: no booking was resolved for an actionable event
        AmountMismatch: a payment does not match the booking's expected amount
        TransitionError: the event makes no sense for the booking's state
    """
    if current is None:
        if event.kind in NON_ACTIONABLE_KINDS:
            raise TransitionError(f"No booking to apply {event.kind.value} to")
        raise NoMatchingBooking(
            f"No booking matches {event.provider.value} subject {event.subject_key!r}"
        )

    if event.kind == EventKind.IGNORED:
        return _unchanged(current, "event kind not handled")

    if current.is_terminal:
        if (
            event.kind == EventKind.REFUND_COMPLETED
            and current.status == BookingStatus.CANCELLED
            and current.refund_pending
        ):
            return _advance(current, event, BookingStatus.REFUNDED, refund_pending=False)
        return _unchanged(current, f"booking is terminal ({current.status.value})")

    handler = _HANDLERS.get(event.kind)
    if handler is None:
        raise TransitionError(f"No transition defined for {event.kind.value}")
    return handler(current, event, refund_policy)


def _on_invitee_created(current: Booking, event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    if current.status == BookingStatus.PENDING_SCHEDULE:
        changes = _scheduling_changes(current, event)
        if not current.is_free:
            return _advance(current, event, BookingStatus.PENDING_PAYMENT, **changes)
        # free sessions pass through SCHEDULED_UNPAID and settle immediately
        return _advance(
            current,
            event,
            BookingStatus.CONFIRMED,
            intents=(IntentKind.SEND_CONFIRMATION_EMAIL,),
            **changes,
        )

    if current.status == BookingStatus.SCHEDULED_UNPAID:
        return _advance(
            current,
            event,
            BookingStatus.CONFIRMED,
            intents=(IntentKind.SEND_CONFIRMATION_EMAIL,),
            **_scheduling_changes(current, event),
        )

    return _unchanged(current, "booking already scheduled")


def _on_invitee_rescheduled(current: Booking, event: ExternalEvent, policy: RefundPolicy) -> TransitionResult:
    if current.status in (BookingStatus.PENDING_SCHEDULE, BookingStatus.SCHEDULED_UNPAID):
        return _on_invitee_created(current, event, policy)
    if current.external_scheduling_id == event.subject_key:
        return _unchanged(current, "reschedule already applied")
    return _advance(current, event, current.status, **_scheduling_changes(current, event))


def _on_invitee_canceled(current: Booking, event: ExternalEvent, policy: RefundPolicy) -> TransitionResult:
    if current.external_scheduling_id and current.external_scheduling_id != event.subject_key:
        return _unchanged(current, "cancellation targets a superseded invitee")

    canceler_type = event.details.get("canceler_type")
    refund = policy.refund_amount(current, event.occurred_at, canceler_type)
    intents = [IntentKind.SEND_CANCELLATION_EMAIL]
    if refund > 0:
        intents.append(IntentKind.INITIATE_REFUND)

    return _advance(
        current,
        event,
        BookingStatus.CANCELLED,
        intents=tuple(intents),
        refund_pending=refund > 0,
        refund_amount=refund or None,
        cancellation_reason=event.details.get("reason") or "Cancelled via Calendly",
        cancelled_by="builder" if canceler_type == "host" else "client",
        client_email=current.client_email or event.details.get("email"),
        client_name=current.client_name or event.details.get("name"),
    )


def _on_no_show_created(current: Booking, event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    if current.status != BookingStatus.CONFIRMED:
        raise TransitionError(f"No-show reported for a {current.status.value} booking")
    return _advance(current, event, BookingStatus.NO_SHOW, intents=(IntentKind.SEND_NO_SHOW_NOTICE,))


def _on_no_show_deleted(current: Booking, _event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    return _unchanged(current, "no-show removal has no effect")


def _on_payment_completed(current: Booking, event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    if current.status == BookingStatus.PENDING_PAYMENT:
        _check_amount(current, event)
        return _advance(
            current,
            event,
            BookingStatus.CONFIRMED,
            intents=(IntentKind.SEND_CONFIRMATION_EMAIL,),
            external_payment_id=event.subject_key,
            external_payment_intent_id=event.payment_intent_id or current.external_payment_intent_id,
            amount_paid=event.amount,
        )
    if current.status == BookingStatus.CONFIRMED:
        return _unchanged(current, "payment already recorded")
    raise TransitionError(f"Payment completed for a {current.status.value} booking")


def _on_payment_failed(current: Booking, _event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    return _unchanged(current, "payment failed; awaiting another checkout attempt")


def _on_refund_completed(current: Booking, _event: ExternalEvent, _policy: RefundPolicy) -> TransitionResult:
    return _unchanged(current, "refund not tracked for an active booking")


_HANDLERS = {
    EventKind.INVITEE_CREATED: _on_invitee_created,
    EventKind.INVITEE_RESCHEDULED: _on_invitee_rescheduled,
    EventKind.INVITEE_CANCELED: _on_invitee_canceled,
    EventKind.NO_SHOW_CREATED: _on_no_show_created,
    EventKind.NO_SHOW_DELETED: _on_no_show_deleted,
    EventKind.PAYMENT_COMPLETED: _on_payment_completed,
    EventKind.PAYMENT_FAILED: _on_payment_failed,
    EventKind.REFUND_COMPLETED: _on_refund_completed,
}


def _check_amount(booking: Booking, event: ExternalEvent) -> None:
    expected_currency = (booking.currency or "").upper()
    actual_currency = (event.currency or "").upper()
    if event.amount != booking.amount or actual_currency != expected_currency:
        raise AmountMismatch(
            f"Payment {event.subject_key} is {event.amount} {actual_currency}, "
            f"booking {booking.id} expects {booking.amount} {expected_currency}",
            expected_amount=booking.amount,
            expected_currency=expected_currency,
            actual_amount=event.amount,
            actual_currency=actual_currency,
        )


def _scheduling_changes(current: Booking, event: ExternalEvent) -> dict[str, Any]:
    details = event.details
    return {
        "external_scheduling_id": event.subject_key,
        "start_time": details.get("start_time") or current.start_time,
        "end_time": details.get("end_time") or current.end_time,
        "timezone": details.get("timezone") or current.timezone,
        "client_email": current.client_email or details.get("email"),
        "client_name": current.client_name or details.get("name"),
    }


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _unchanged(current: Booking, reason: str) -> TransitionResult:
    return TransitionResult(next=current, intents=(), changed=False, reason=reason)


def _advance(
    current: Booking,
    event: ExternalEvent,
    to_status: BookingStatus,
    intents: tuple[IntentKind, ...] = (),
    **changes: Any,
) -> TransitionResult:
    entry = AuditEntry(
        timestamp=event.occurred_at,
        from_status=current.status,
        to_status=to_status,
        triggering_event_id=event.external_event_id,
    )
    next_booking = replace(
        current,
        status=to_status,
        version=current.version + 1,
        audit_trail=current.audit_trail + (entry,),
        updated_at=event.occurred_at,
        **changes,
    )
    return TransitionResult(
        next=next_booking,
        intents=tuple(_build_intent(kind, next_booking, event) for kind in intents),
        changed=True,
        reason=f"{current.status.value} -> {to_status.value}",
    )


def _build_intent(kind: IntentKind, booking: Booking, event: ExternalEvent) -> SideEffectIntent:
    if kind == IntentKind.INITIATE_REFUND:
        params: dict[str, Any] = {
            "payment_intent_id": booking.external_payment_intent_id,
            "payment_id": booking.external_payment_id,
            "amount": booking.refund_amount,
            "currency": booking.currency,
            "reason": booking.cancellation_reason,
        }
    else:
        params = {
            "recipient": booking.client_email,
            "client_name": booking.client_name,
            "builder_id": booking.builder_id,
            "session_type_id": booking.session_type_id,
            "start_time": booking.start_time.isoformat() if booking.start_time else None,
            "end_time": booking.end_time.isoformat() if booking.end_time else None,
            "timezone": booking.timezone,
            "amount": booking.amount,
            "currency": booking.currency,
        }
        if kind == IntentKind.SEND_CANCELLATION_EMAIL:
            params["reason"] = booking.cancellation_reason
            params["refund_amount"] = booking.refund_amount
    return SideEffectIntent(
        kind=kind,
        booking_id=booking.id,
        params=params,
        idempotency_key=f"{booking.id}:{kind.value}:{event.external_event_id}",
    )
