from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping

import httpx

from booking_reconciler.application.exceptions import DispatchError
from booking_reconciler.application.ports.followup_store import DeadLetterStorePort
from booking_reconciler.application.ports.notifier import NotifierPort
from booking_reconciler.application.ports.payment_gateway import PaymentGatewayPort
from booking_reconciler.application.utils.retry import backoff_delays
from booking_reconciler.domain.entities.side_effect import (
    EMAIL_INTENTS,
    DeadLetterRecord,
    IntentKind,
    SideEffectIntent,
)


alert_logger = logging.getLogger("booking_reconciler.alerts")


class DispatchIntentsUseCase:
    """
    Executes side-effect intents after the booking change has been committed.

    Failures here never roll a booking back: an intent that keeps failing is
    dead-lettered and alerted on, and the booking status stays authoritative.
    """

    def __init__(
        self,
        notifier: NotifierPort,
        payments: PaymentGatewayPort,
        dead_letters: DeadLetterStorePort,
        templates: Mapping[IntentKind, str],
        max_attempts: int = 4,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._notifier = notifier
        self._payments = payments
        self._dead_letters = dead_letters
        self._templates = dict(templates)
        self._max_attempts = max(max_attempts, 1)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter = jitter
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    def dispatch_all(self, intents: Iterable[SideEffectIntent]) -> None:
        for intent in intents:
            try:
                self.dispatch(intent)
            except Exception:
                # one failing intent never stops the rest
                self._logger.exception(
                    "Intent dispatch crashed", extra={"booking_id": intent.booking_id, "intent": intent.kind.value}
                )

    def dispatch(self, intent: SideEffectIntent) -> bool:
        """Run one intent with retries. Returns False when it was dead-lettered."""
        delays = backoff_delays(self._max_attempts, self._base_delay, self._max_delay, jitter=self._jitter)
        attempt = 0
        while True:
            attempt += 1
            try:
                self._execute(intent)
            except DispatchError as e:
                if not e.retryable or attempt >= self._max_attempts:
                    self._dead_letter(intent, attempt, str(e))
                    return False
                error = str(e)
            except httpx.TransportError as e:
                if attempt >= self._max_attempts:
                    self._dead_letter(intent, attempt, str(e))
                    return False
                error = str(e)
            except Exception as e:
                self._logger.exception(
                    "Intent failed unexpectedly",
                    extra={"booking_id": intent.booking_id, "intent": intent.kind.value, "attempt": attempt},
                )
                self._dead_letter(intent, attempt, f"{type(e).__name__}: {e}")
                return False
            else:
                self._logger.info(
                    "Intent dispatched",
                    extra={"booking_id": intent.booking_id, "intent": intent.kind.value, "attempt": attempt},
                )
                return True

            delay = delays[attempt - 1]
            self._logger.warning(
                "Intent failed, retrying",
                extra={"booking_id": intent.booking_id, "intent": intent.kind.value, "attempt": attempt,
                       "delay": round(delay, 3), "error": error},
            )
            self._sleep(delay)

    def _execute(self, intent: SideEffectIntent) -> None:
        params = intent.params
        if intent.kind == IntentKind.INITIATE_REFUND:
            payment_intent_id = params.get("payment_intent_id")
            amount = params.get("amount")
            if not payment_intent_id or not amount:
                raise DispatchError("Refund intent has no payment intent or amount", retryable=False)
            refund_id = self._payments.refund(
                payment_intent_id=payment_intent_id,
                amount=int(amount),
                currency=params.get("currency") or "",
                idempotency_key=intent.idempotency_key,
                metadata={"booking_id": intent.booking_id},
            )
            self._logger.info("Refund issued", extra={"booking_id": intent.booking_id, "refund_id": refund_id})
            return

        if intent.kind in EMAIL_INTENTS:
            recipient = params.get("recipient")
            if not recipient:
                raise DispatchError("Email intent has no recipient", retryable=False)
            context = {key: value for key, value in params.items() if key != "recipient"}
            context["booking_id"] = intent.booking_id
            self._notifier.send(self._templates[intent.kind], recipient, context)
            return

        raise DispatchError(f"Unknown intent kind {intent.kind}", retryable=False)

    def _dead_letter(self, intent: SideEffectIntent, attempts: int, error: str) -> None:
        financial = intent.kind == IntentKind.INITIATE_REFUND
        self._dead_letters.add(
            DeadLetterRecord(
                intent=intent,
                attempts=attempts,
                last_error=error,
                failed_at=self._clock(),
                financial=financial,
            )
        )
        alert_logger.error(
            "Refund could not be issued" if financial else "Notification could not be delivered",
            extra={
                "alert": "refund_failed" if financial else "notification_failed",
                "booking_id": intent.booking_id,
                "intent": intent.kind.value,
                "attempt": attempts,
                "error": error,
            },
        )
