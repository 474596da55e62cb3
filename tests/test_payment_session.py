"""
Tests for recording a checkout session on a booking when the client starts paying.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from booking_reconciler.application.exceptions import DuplicateCorrelationKey, TransitionError
from booking_reconciler.application.use_cases.record_payment_session import RecordPaymentSessionUseCase
from booking_reconciler.domain.entities.booking import BookingStatus
from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.infrastructure.store.memory_store import MemoryBookingStore

from factories import NOW, ReconcilerHarness, calendly_body, checkout_session, stripe_body


def _use_case(harness: ReconcilerHarness) -> RecordPaymentSessionUseCase:
    return RecordPaymentSessionUseCase(store=harness.store, clock=lambda: NOW)


def test_session_is_recorded_with_an_audit_entry(harness):
    booking = harness.create(amount=5000, currency="usd")

    saved = _use_case(harness).execute(booking.id, "cs_live_9", "pi_live_9")

    assert saved.status == BookingStatus.PENDING_SCHEDULE
    assert saved.version == 2
    assert saved.external_payment_id == "cs_live_9"
    assert saved.external_payment_intent_id == "pi_live_9"
    (entry,) = saved.audit_trail
    assert entry.triggering_event_id == "checkout:cs_live_9"
    assert entry.from_status == entry.to_status == BookingStatus.PENDING_SCHEDULE
    assert harness.store.find_by_external_payment_id("cs_live_9").id == booking.id


def test_recording_the_same_session_twice_is_a_no_op(harness):
    booking = harness.create(amount=5000, currency="usd")
    use_case = _use_case(harness)

    use_case.execute(booking.id, "cs_live_9")
    again = use_case.execute(booking.id, "cs_live_9")

    assert again.version == 2


def test_new_session_replaces_an_abandoned_one(harness):
    booking = harness.create(amount=5000, currency="usd")
    use_case = _use_case(harness)

    use_case.execute(booking.id, "cs_first", "pi_first")
    saved = use_case.execute(booking.id, "cs_second")

    assert saved.external_payment_id == "cs_second"
    assert saved.external_payment_intent_id is None
    assert harness.store.find_by_external_payment_id("cs_first") is None
    assert harness.store.find_by_external_payment_id("pi_first") is None


def test_payment_webhook_without_booking_reference_matches_recorded_session(harness):
    """Test that a checkout carrying no booking id in its metadata still confirms via the recorded session."""
    booking = harness.create(amount=5000, currency="usd")
    harness.deliver(Provider.CALENDLY, calendly_body("invitee.created", booking_id=booking.id))
    _use_case(harness).execute(booking.id, "cs_live_9")

    session = checkout_session(booking.id, session_id="cs_live_9", payment_intent="pi_live_9")
    session["metadata"] = {}
    session["client_reference_id"] = None
    result = harness.deliver(Provider.STRIPE, stripe_body("evt_paid", "checkout.session.completed", session))

    assert result.status_code == 200
    stored = harness.booking(booking.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.external_payment_intent_id == "pi_live_9"
    assert harness.sleeps == []


def test_unknown_booking_raises_lookup_error(harness):
    with pytest.raises(LookupError):
        _use_case(harness).execute("missing", "cs_live_9")


def test_blank_session_id_is_rejected(harness):
    booking = harness.create(amount=5000, currency="usd")
    with pytest.raises(ValueError):
        _use_case(harness).execute(booking.id, "")


def test_free_or_settled_bookings_take_no_payment(harness):
    free = harness.create()
    with pytest.raises(TransitionError):
        _use_case(harness).execute(free.id, "cs_live_9")

    paid = harness.create(amount=5000, currency="usd")
    harness.store.compare_and_swap(paid.id, 1, lambda b: replace(b, status=BookingStatus.CANCELLED, version=2))
    with pytest.raises(TransitionError):
        _use_case(harness).execute(paid.id, "cs_live_9")


def test_session_owned_by_another_booking_is_refused(harness):
    first = harness.create(amount=5000, currency="usd")
    second = harness.create(amount=5000, currency="usd")
    use_case = _use_case(harness)
    use_case.execute(first.id, "cs_live_9")

    with pytest.raises(DuplicateCorrelationKey):
        use_case.execute(second.id, "cs_live_9")
    assert harness.booking(second.id).version == 1


def test_concurrent_change_is_reloaded():
    class RacingStore(MemoryBookingStore):
        raced = False

        def compare_and_swap(self, booking_id, expected_version, mutation):
            if not self.raced:
                self.raced = True
                super().compare_and_swap(
                    booking_id, expected_version, lambda b: replace(b, version=b.version + 1, timezone="UTC")
                )
            return super().compare_and_swap(booking_id, expected_version, mutation)

    harness = ReconcilerHarness(store=RacingStore(clock=lambda: NOW))
    booking = harness.create(amount=5000, currency="usd")

    saved = _use_case(harness).execute(booking.id, "cs_live_9")

    assert saved.version == 3
    assert saved.timezone == "UTC"
    assert saved.external_payment_id == "cs_live_9"
