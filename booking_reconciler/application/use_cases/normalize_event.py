from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from booking_reconciler.application.dto.calendly_webhook import CalendlyWebhookDTO
from booking_reconciler.application.dto.stripe_webhook import StripeWebhookDTO
from booking_reconciler.application.exceptions import NormalizationError
from booking_reconciler.domain.entities.external_event import EventKind, ExternalEvent, Provider


CALENDLY_KINDS: dict[str, EventKind] = {
    "invitee.created": EventKind.INVITEE_CREATED,
    "invitee.canceled": EventKind.INVITEE_CANCELED,
    "invitee_no_show.created": EventKind.NO_SHOW_CREATED,
    "invitee_no_show.deleted": EventKind.NO_SHOW_DELETED,
}

STRIPE_KINDS: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.PAYMENT_COMPLETED,
    "checkout.session.async_payment_succeeded": EventKind.PAYMENT_COMPLETED,
    "payment_intent.payment_failed": EventKind.PAYMENT_FAILED,
    "charge.refunded": EventKind.REFUND_COMPLETED,
    "refund.updated": EventKind.REFUND_COMPLETED,
}


def payload_digest(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


class EventNormalizer:
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    def normalize(self, provider: Provider, raw_body: bytes) -> ExternalEvent:
        """Map a verified raw webhook body to an ExternalEvent. Raises NormalizationError."""
        document = _load_json(raw_body)
        digest = payload_digest(raw_body)
        if provider == Provider.CALENDLY:
            return self._normalize_calendly(document, digest)
        if provider == Provider.STRIPE:
            return self._normalize_stripe(document, digest)
        raise NormalizationError(f"Unsupported provider: {provider}")

    def _normalize_calendly(self, document: dict[str, Any], digest: str) -> ExternalEvent:
        try:
            dto = CalendlyWebhookDTO.model_validate(document)
        except ValidationError as e:
            raise NormalizationError(f"Invalid Calendly payload: {e.error_count()} error(s)") from e

        payload = dto.payload
        kind = CALENDLY_KINDS.get(dto.event, EventKind.IGNORED)
        occurred_at = _as_utc(dto.created_at) if dto.created_at else self._clock()
        tracking = payload.tracking
        details: dict[str, Any] = {}
        previous_subject = None

        if kind in (EventKind.NO_SHOW_CREATED, EventKind.NO_SHOW_DELETED):
            subject = payload.invitee
            if not subject:
                raise NormalizationError(f"Calendly {dto.event} is missing the invitee reference")
        else:
            subject = payload.uri
            if kind != EventKind.IGNORED and not subject:
                raise NormalizationError(f"Calendly {dto.event} is missing the invitee uri")

        if kind == EventKind.INVITEE_CREATED:
            scheduled = payload.scheduled_event
            details = {
                "email": payload.email,
                "name": payload.name,
                "timezone": payload.timezone,
                "start_time": _as_utc(scheduled.start_time) if scheduled and scheduled.start_time else None,
                "end_time": _as_utc(scheduled.end_time) if scheduled and scheduled.end_time else None,
                "event_uri": scheduled.uri if scheduled else None,
            }
            if payload.old_invitee:
                kind = EventKind.INVITEE_RESCHEDULED
                previous_subject = payload.old_invitee
        elif kind == EventKind.INVITEE_CANCELED:
            if payload.rescheduled:
                # first half of a reschedule; the new invitee.created carries the change
                kind = EventKind.IGNORED
            cancellation = payload.cancellation
            details = {
                "email": payload.email,
                "name": payload.name,
                "reason": cancellation.reason if cancellation else None,
                "canceler_type": cancellation.canceler_type if cancellation else None,
                "rescheduled": payload.rescheduled,
            }

        return ExternalEvent(
            provider=Provider.CALENDLY,
            kind=kind,
            external_event_id=f"{dto.event}:{subject or digest}",
            subject_key=subject,
            occurred_at=occurred_at,
            payload_digest=digest,
            raw_type=dto.event,
            booking_reference=tracking.utm_content if tracking else None,
            previous_subject_key=previous_subject,
            details=details,
        )

    def _normalize_stripe(self, document: dict[str, Any], digest: str) -> ExternalEvent:
        try:
            dto = StripeWebhookDTO.model_validate(document)
        except ValidationError as e:
            raise NormalizationError(f"Invalid Stripe payload: {e.error_count()} error(s)") from e

        obj = dto.data.object
        kind = STRIPE_KINDS.get(dto.type, EventKind.IGNORED)
        if dto.type == "refund.updated" and obj.status != "succeeded":
            kind = EventKind.IGNORED

        occurred_at = (
            datetime.fromtimestamp(dto.created, tz=timezone.utc) if dto.created is not None else self._clock()
        )
        payment_intent_id = obj.payment_intent_id()
        amount = None
        subject = obj.id

        if kind == EventKind.PAYMENT_COMPLETED:
            amount = obj.amount_total
        elif kind == EventKind.PAYMENT_FAILED:
            payment_intent_id = obj.id
        elif kind == EventKind.REFUND_COMPLETED:
            subject = payment_intent_id
            amount = obj.amount_refunded if dto.type == "charge.refunded" else obj.amount

        if kind != EventKind.IGNORED and not subject:
            raise NormalizationError(f"Stripe {dto.type} is missing its object id")

        return ExternalEvent(
            provider=Provider.STRIPE,
            kind=kind,
            external_event_id=dto.id,
            subject_key=subject,
            occurred_at=occurred_at,
            payload_digest=digest,
            raw_type=dto.type,
            booking_reference=obj.booking_reference(),
            amount=amount,
            currency=obj.currency.upper() if obj.currency else None,
            payment_intent_id=payment_intent_id,
        )


def _load_json(raw_body: bytes) -> dict[str, Any]:
    try:
        document = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise NormalizationError("Webhook body is not valid JSON") from e
    if not isinstance(document, dict):
        raise NormalizationError("Webhook body must be a JSON object")
    return document


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
