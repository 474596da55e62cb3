"""
Tests for dispatching side-effect intents to email and refund collaborators.
"""

from __future__ import annotations

import logging

import httpx

from booking_reconciler.application.exceptions import DispatchError
from booking_reconciler.application.use_cases.dispatch_intents import DispatchIntentsUseCase
from booking_reconciler.domain.entities.side_effect import IntentKind, SideEffectIntent
from booking_reconciler.infrastructure.email.mock_notifier import MockNotifier
from booking_reconciler.infrastructure.payments.mock_payments import MockPaymentGateway
from booking_reconciler.infrastructure.store.memory_store import MemoryDeadLetterStore


TEMPLATES = {
    IntentKind.SEND_CONFIRMATION_EMAIL: "tmpl-confirm",
    IntentKind.SEND_CANCELLATION_EMAIL: "tmpl-cancel",
    IntentKind.SEND_NO_SHOW_NOTICE: "tmpl-no-show",
}


class FlakyNotifier(MockNotifier):
    def __init__(self, failures: list[Exception]) -> None:
        super().__init__()
        self.failures = failures
        self.calls = 0

    def send(self, template_id, recipient, context) -> None:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        super().send(template_id, recipient, context)


class BrokenPayments(MockPaymentGateway):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def refund(self, payment_intent_id, amount, currency, idempotency_key, metadata=None) -> str:
        self.calls += 1
        raise DispatchError("Stripe returned 503", retryable=True)


def _dispatcher(notifier=None, payments=None, max_attempts=4):
    sleeps: list[float] = []
    dead_letters = MemoryDeadLetterStore()
    dispatcher = DispatchIntentsUseCase(
        notifier=notifier or MockNotifier(),
        payments=payments or MockPaymentGateway(),
        dead_letters=dead_letters,
        templates=TEMPLATES,
        max_attempts=max_attempts,
        base_delay=0.5,
        max_delay=8.0,
        jitter=False,
        sleep=sleeps.append,
    )
    return dispatcher, dead_letters, sleeps


def _email(kind=IntentKind.SEND_CONFIRMATION_EMAIL, recipient="ada@example.com") -> SideEffectIntent:
    return SideEffectIntent(
        kind=kind,
        booking_id="bk-1",
        params={"recipient": recipient, "client_name": "Ada", "start_time": "2026-03-10T15:00:00+00:00"},
        idempotency_key=f"bk-1:{kind.value}:e1",
    )


def _refund(amount=5000) -> SideEffectIntent:
    return SideEffectIntent(
        kind=IntentKind.INITIATE_REFUND,
        booking_id="bk-1",
        params={"payment_intent_id": "pi_1", "amount": amount, "currency": "USD"},
        idempotency_key="bk-1:INITIATE_REFUND:e2",
    )


def test_email_uses_template_for_intent():
    notifier = MockNotifier()
    dispatcher, dead_letters, _ = _dispatcher(notifier=notifier)

    dispatcher.dispatch_all([_email(), _email(IntentKind.SEND_NO_SHOW_NOTICE)])

    assert [sent[0] for sent in notifier.sent] == ["tmpl-confirm", "tmpl-no-show"]
    template_id, recipient, context = notifier.sent[0]
    assert recipient == "ada@example.com"
    assert context["booking_id"] == "bk-1"
    assert "recipient" not in context
    assert dead_letters.all() == []


def test_refund_carries_idempotency_key_and_booking_metadata():
    payments = MockPaymentGateway()
    dispatcher, _, _ = _dispatcher(payments=payments)

    assert dispatcher.dispatch(_refund())
    assert dispatcher.dispatch(_refund())

    (refund,) = payments.refunds.values()
    assert refund["amount"] == 5000
    assert refund["payment_intent"] == "pi_1"
    assert refund["metadata"] == {"booking_id": "bk-1"}
    assert list(payments.refunds) == ["bk-1:INITIATE_REFUND:e2"]


def test_retryable_failure_is_retried_with_backoff():
    notifier = FlakyNotifier([DispatchError("429", retryable=True), httpx.ConnectError("refused")])
    dispatcher, dead_letters, sleeps = _dispatcher(notifier=notifier)

    assert dispatcher.dispatch(_email())
    assert notifier.calls == 3
    assert sleeps == [0.5, 1.0]
    assert len(notifier.sent) == 1
    assert dead_letters.all() == []


def test_non_retryable_failure_goes_straight_to_dead_letter(caplog):
    caplog.set_level(logging.ERROR)
    notifier = FlakyNotifier([DispatchError("400 bad template", retryable=False)])
    dispatcher, dead_letters, sleeps = _dispatcher(notifier=notifier)

    assert not dispatcher.dispatch(_email())
    assert notifier.calls == 1
    assert sleeps == []

    (record,) = dead_letters.all()
    assert record.attempts == 1
    assert not record.financial
    assert "bad template" in record.last_error
    assert any(getattr(r, "alert", None) == "notification_failed" for r in caplog.records)


def test_refund_exhaustion_is_a_financial_dead_letter(caplog):
    caplog.set_level(logging.ERROR)
    payments = BrokenPayments()
    dispatcher, dead_letters, sleeps = _dispatcher(payments=payments, max_attempts=3)

    assert not dispatcher.dispatch(_refund())
    assert payments.calls == 3
    assert sleeps == [0.5, 1.0]

    (record,) = dead_letters.all()
    assert record.financial
    assert record.attempts == 3
    assert record.intent.kind == IntentKind.INITIATE_REFUND
    assert any(getattr(r, "alert", None) == "refund_failed" for r in caplog.records)


def test_email_without_recipient_is_dead_lettered():
    dispatcher, dead_letters, sleeps = _dispatcher()

    assert not dispatcher.dispatch(_email(recipient=None))
    assert dead_letters.all()[0].attempts == 1
    assert sleeps == []


def test_one_failing_intent_does_not_block_the_rest():
    notifier = MockNotifier()
    dispatcher, dead_letters, _ = _dispatcher(notifier=notifier)

    dispatcher.dispatch_all([_refund(amount=None), _email(IntentKind.SEND_CANCELLATION_EMAIL)])

    assert len(dead_letters.all()) == 1
    assert [sent[0] for sent in notifier.sent] == ["tmpl-cancel"]


def test_unexpected_error_is_dead_lettered_and_later_intents_still_run(caplog):
    """Test that a notifier bug ahead of a refund is dead-lettered and alerted, and the refund is still issued."""
    caplog.set_level(logging.ERROR)
    notifier = FlakyNotifier([RuntimeError("template renderer exploded")])
    payments = MockPaymentGateway()
    dispatcher, dead_letters, sleeps = _dispatcher(notifier=notifier, payments=payments)

    dispatcher.dispatch_all([_email(IntentKind.SEND_CANCELLATION_EMAIL), _refund()])

    (record,) = dead_letters.all()
    assert record.intent.kind == IntentKind.SEND_CANCELLATION_EMAIL
    assert record.attempts == 1
    assert "RuntimeError" in record.last_error
    assert notifier.calls == 1
    assert sleeps == []
    assert list(payments.refunds) == ["bk-1:INITIATE_REFUND:e2"]
    assert any(getattr(r, "alert", None) == "notification_failed" for r in caplog.records)


def test_missing_template_is_dead_lettered():
    dead_letters = MemoryDeadLetterStore()
    dispatcher = DispatchIntentsUseCase(
        notifier=MockNotifier(),
        payments=MockPaymentGateway(),
        dead_letters=dead_letters,
        templates={IntentKind.SEND_CONFIRMATION_EMAIL: "tmpl-confirm"},
        sleep=lambda delay: None,
    )

    assert not dispatcher.dispatch(_email(IntentKind.SEND_NO_SHOW_NOTICE))
    assert "KeyError" in dead_letters.all()[0].last_error
