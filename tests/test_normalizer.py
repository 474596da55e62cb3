"""
Tests for mapping raw Calendly and Stripe bodies to ExternalEvents.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from booking_reconciler.application.exceptions import NormalizationError
from booking_reconciler.application.use_cases.normalize_event import EventNormalizer, payload_digest
from booking_reconciler.domain.entities.external_event import EventKind, Provider

from factories import INVITEE, NOW, SIGNED_AT, calendly_body, checkout_session, stripe_body


normalizer = EventNormalizer(clock=lambda: NOW)


def test_calendly_invitee_created():
    body = calendly_body("invitee.created", booking_id="bk-1")
    event = normalizer.normalize(Provider.CALENDLY, body)

    assert event.provider == Provider.CALENDLY
    assert event.kind == EventKind.INVITEE_CREATED
    assert event.subject_key == INVITEE
    assert event.external_event_id == f"invitee.created:{INVITEE}"
    assert event.booking_reference == "bk-1"
    assert event.occurred_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert event.payload_digest == payload_digest(body)
    assert event.details["email"] == "ada@example.com"
    assert event.details["start_time"] == datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
    assert event.details["timezone"] == "Europe/London"


def test_calendly_created_with_old_invitee_is_a_reschedule():
    body = calendly_body("invitee.created", invitee_uri=f"{INVITEE}-new", old_invitee=INVITEE)
    event = normalizer.normalize(Provider.CALENDLY, body)

    assert event.kind == EventKind.INVITEE_RESCHEDULED
    assert event.subject_key == f"{INVITEE}-new"
    assert event.previous_subject_key == INVITEE


def test_calendly_cancellation_details():
    body = calendly_body("invitee.canceled", canceler_type="host", reason="Builder is ill")
    event = normalizer.normalize(Provider.CALENDLY, body)

    assert event.kind == EventKind.INVITEE_CANCELED
    assert event.details["canceler_type"] == "host"
    assert event.details["reason"] == "Builder is ill"
    assert event.external_event_id == f"invitee.canceled:{INVITEE}"


def test_calendly_cancellation_half_of_reschedule_is_ignored():
    """Test that the cancel Calendly sends while rescheduling does not cancel the booking."""
    event = normalizer.normalize(Provider.CALENDLY, calendly_body("invitee.canceled", rescheduled=True))
    assert event.kind == EventKind.IGNORED


def test_calendly_no_show_targets_the_invitee():
    event = normalizer.normalize(Provider.CALENDLY, calendly_body("invitee_no_show.created"))
    assert event.kind == EventKind.NO_SHOW_CREATED
    assert event.subject_key == INVITEE


def test_calendly_unknown_event_is_ignored_not_rejected():
    event = normalizer.normalize(Provider.CALENDLY, calendly_body("routing_form_submission.created"))
    assert event.kind == EventKind.IGNORED
    assert event.raw_type == "routing_form_submission.created"


def test_stripe_checkout_completed():
    body = stripe_body("evt_1", "checkout.session.completed", checkout_session("bk-1", amount=5000))
    event = normalizer.normalize(Provider.STRIPE, body)

    assert event.kind == EventKind.PAYMENT_COMPLETED
    assert event.external_event_id == "evt_1"
    assert event.subject_key == "cs_test_1"
    assert event.payment_intent_id == "pi_test_1"
    assert event.amount == 5000
    assert event.currency == "USD"
    assert event.booking_reference == "bk-1"
    assert event.occurred_at == datetime.fromtimestamp(SIGNED_AT, tz=timezone.utc)


def test_stripe_expanded_payment_intent_object():
    obj = checkout_session("bk-1")
    obj["payment_intent"] = {"id": "pi_expanded", "object": "payment_intent"}
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_2", "checkout.session.completed", obj))
    assert event.payment_intent_id == "pi_expanded"


def test_stripe_booking_reference_from_camel_case_metadata():
    obj = checkout_session("bk-7")
    obj["metadata"] = {"bookingId": "bk-7", "builderId": "builder-1"}
    obj["client_reference_id"] = None
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_camel", "checkout.session.completed", obj))
    assert event.booking_reference == "bk-7"


def test_stripe_payment_failed_is_keyed_by_payment_intent():
    obj = {"id": "pi_failed", "object": "payment_intent", "amount": 5000, "currency": "usd",
           "metadata": {"booking_id": "bk-1"}}
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_3", "payment_intent.payment_failed", obj))

    assert event.kind == EventKind.PAYMENT_FAILED
    assert event.payment_intent_id == "pi_failed"
    assert event.booking_reference == "bk-1"


def test_stripe_charge_refunded_uses_refunded_amount():
    obj = {"id": "ch_1", "object": "charge", "amount": 5000, "amount_refunded": 2500,
           "currency": "usd", "payment_intent": "pi_test_1"}
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_4", "charge.refunded", obj))

    assert event.kind == EventKind.REFUND_COMPLETED
    assert event.subject_key == "pi_test_1"
    assert event.amount == 2500


def test_stripe_refund_updated_only_counts_when_succeeded():
    obj = {"id": "re_1", "object": "refund", "status": "pending", "amount": 5000, "payment_intent": "pi_test_1"}
    assert normalizer.normalize(Provider.STRIPE, stripe_body("evt_5", "refund.updated", obj)).kind == EventKind.IGNORED

    obj["status"] = "succeeded"
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_6", "refund.updated", obj))
    assert event.kind == EventKind.REFUND_COMPLETED
    assert event.amount == 5000


def test_stripe_unhandled_type_is_ignored():
    event = normalizer.normalize(Provider.STRIPE, stripe_body("evt_7", "customer.created", {"id": "cus_1"}))
    assert event.kind == EventKind.IGNORED


def test_malformed_bodies_raise():
    with pytest.raises(NormalizationError):
        normalizer.normalize(Provider.CALENDLY, b"not json")
    with pytest.raises(NormalizationError):
        normalizer.normalize(Provider.CALENDLY, b"[1, 2, 3]")
    with pytest.raises(NormalizationError):
        normalizer.normalize(Provider.CALENDLY, b'{"payload": {}}')
    with pytest.raises(NormalizationError):
        normalizer.normalize(Provider.STRIPE, b'{"id": "evt_8"}')


def test_recognized_event_without_subject_raises():
    with pytest.raises(NormalizationError):
        normalizer.normalize(Provider.CALENDLY, b'{"event": "invitee.created", "payload": {}}')
    with pytest.raises(NormalizationError):
        normalizer.normalize(
            Provider.STRIPE,
            stripe_body("evt_9", "charge.refunded", {"id": "ch_1", "amount_refunded": 100}),
        )
