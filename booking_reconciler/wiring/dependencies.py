from functools import lru_cache
import logging
import os

from booking_reconciler.core.config import settings
from booking_reconciler.application.ports.booking_store import BookingStorePort
from booking_reconciler.application.ports.event_ledger import EventLedgerPort
from booking_reconciler.application.ports.notifier import NotifierPort
from booking_reconciler.application.ports.payment_gateway import PaymentGatewayPort
from booking_reconciler.application.use_cases.booking_state_machine import RefundPolicy
from booking_reconciler.application.use_cases.create_booking import CreateBookingUseCase
from booking_reconciler.application.use_cases.dispatch_intents import DispatchIntentsUseCase
from booking_reconciler.application.use_cases.normalize_event import EventNormalizer
from booking_reconciler.application.use_cases.record_payment_session import RecordPaymentSessionUseCase
from booking_reconciler.application.use_cases.reconcile_webhook import ReconcileWebhookUseCase
from booking_reconciler.domain.entities.external_event import Provider
from booking_reconciler.domain.entities.side_effect import IntentKind
from booking_reconciler.infrastructure.email.mock_notifier import MockNotifier
from booking_reconciler.infrastructure.email.sendgrid_client import SendGridClient
from booking_reconciler.infrastructure.email.sendgrid_notifier import SendGridNotifier
from booking_reconciler.infrastructure.payments.mock_payments import MockPaymentGateway
from booking_reconciler.infrastructure.payments.stripe_gateway import StripePaymentGateway
from booking_reconciler.infrastructure.payments.stripe_refund_client import StripeRefundClient
from booking_reconciler.infrastructure.store.json_store import JsonBookingStore, JsonEventLedger
from booking_reconciler.infrastructure.store.memory_store import (
    MemoryBookingStore,
    MemoryDeadLetterStore,
    MemoryEventLedger,
    MemoryReconciliationQueue,
)
from booking_reconciler.infrastructure.webhooks.signature import SignatureVerifier, WebhookSecrets


_booking_store: BookingStorePort | None = None
_event_ledger: EventLedgerPort | None = None
_dead_letters = MemoryDeadLetterStore()
_reconciliation_queue = MemoryReconciliationQueue()


def _is_local() -> bool:
    return settings.ENV.lower() in {"dev", "local"}


def get_booking_store() -> BookingStorePort:
    global _booking_store
    if _booking_store is None:
        if _is_local():
            _booking_store = JsonBookingStore(data_dir=os.path.join(settings.DATA_DIR, "bookings"))
        else:
            _booking_store = MemoryBookingStore()
    return _booking_store


def get_event_ledger() -> EventLedgerPort:
    global _event_ledger
    if _event_ledger is None:
        if _is_local():
            _event_ledger = JsonEventLedger(data_dir=os.path.join(settings.DATA_DIR, "ledger"))
        else:
            _event_ledger = MemoryEventLedger()
    return _event_ledger


def get_dead_letter_store() -> MemoryDeadLetterStore:
    return _dead_letters


def get_reconciliation_queue() -> MemoryReconciliationQueue:
    return _reconciliation_queue


@lru_cache
def get_signature_verifier() -> SignatureVerifier:
    return SignatureVerifier(
        secrets={
            Provider.CALENDLY: WebhookSecrets(
                primary=settings.CALENDLY_WEBHOOK_SIGNING_KEY,
                secondary=settings.CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY,
            ),
            Provider.STRIPE: WebhookSecrets(
                primary=settings.STRIPE_WEBHOOK_SECRET,
                secondary=settings.STRIPE_WEBHOOK_SECRET_SECONDARY,
            ),
        },
        replay_window_seconds=settings.WEBHOOK_REPLAY_WINDOW_SECONDS,
    )


def get_refund_policy() -> RefundPolicy:
    return RefundPolicy(
        full_notice_hours=settings.REFUND_FULL_NOTICE_HOURS,
        partial_notice_hours=settings.REFUND_PARTIAL_NOTICE_HOURS,
        partial_percent=settings.REFUND_PARTIAL_PERCENT,
    )


@lru_cache
def get_notifier() -> NotifierPort:
    logger = logging.getLogger(__name__)
    if not settings.SENDGRID_API_KEY:
        if _is_local():
            logger.info("Using MockNotifier (SENDGRID_API_KEY missing, ENV=dev/local)")
            return MockNotifier()
        raise ValueError("SENDGRID_API_KEY is required to send booking emails.")

    client = SendGridClient(
        api_key=settings.SENDGRID_API_KEY,
        api_url=settings.SENDGRID_API_URL,
        from_email=settings.SENDGRID_FROM_EMAIL,
    )
    return SendGridNotifier(client=client)


@lru_cache
def get_payment_gateway() -> PaymentGatewayPort:
    logger = logging.getLogger(__name__)
    if not settings.STRIPE_SECRET_KEY:
        if _is_local():
            logger.info("Using MockPaymentGateway (STRIPE_SECRET_KEY missing, ENV=dev/local)")
            return MockPaymentGateway()
        raise ValueError("STRIPE_SECRET_KEY is required to issue refunds.")

    client = StripeRefundClient(secret_key=settings.STRIPE_SECRET_KEY, base_url=settings.STRIPE_API_BASE)
    return StripePaymentGateway(client=client)


def get_reconcile_webhook_use_case() -> ReconcileWebhookUseCase:
    return ReconcileWebhookUseCase(
        verifier=get_signature_verifier(),
        normalizer=EventNormalizer(),
        store=get_booking_store(),
        ledger=get_event_ledger(),
        reconciliation_queue=get_reconciliation_queue(),
        refund_policy=get_refund_policy(),
        missing_booking_max_attempts=settings.MISSING_BOOKING_MAX_ATTEMPTS,
        missing_booking_base_delay=settings.MISSING_BOOKING_BASE_DELAY_SECONDS,
        concurrency_max_attempts=settings.CONCURRENCY_MAX_ATTEMPTS,
        timeout_budget_seconds=settings.WEBHOOK_TIMEOUT_BUDGET_SECONDS,
    )


def get_dispatch_intents_use_case() -> DispatchIntentsUseCase:
    return DispatchIntentsUseCase(
        notifier=get_notifier(),
        payments=get_payment_gateway(),
        dead_letters=get_dead_letter_store(),
        templates={
            IntentKind.SEND_CONFIRMATION_EMAIL: settings.SENDGRID_TEMPLATE_CONFIRMATION,
            IntentKind.SEND_CANCELLATION_EMAIL: settings.SENDGRID_TEMPLATE_CANCELLATION,
            IntentKind.SEND_NO_SHOW_NOTICE: settings.SENDGRID_TEMPLATE_NO_SHOW,
        },
        max_attempts=settings.DISPATCH_MAX_ATTEMPTS,
        base_delay=settings.DISPATCH_BASE_DELAY_SECONDS,
        max_delay=settings.DISPATCH_MAX_DELAY_SECONDS,
    )


def get_create_booking_use_case() -> CreateBookingUseCase:
    return CreateBookingUseCase(store=get_booking_store())


def get_record_payment_session_use_case() -> RecordPaymentSessionUseCase:
    return RecordPaymentSessionUseCase(
        store=get_booking_store(),
        max_attempts=settings.CONCURRENCY_MAX_ATTEMPTS,
    )
