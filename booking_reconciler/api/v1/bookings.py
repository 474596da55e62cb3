from fastapi import APIRouter, Depends, HTTPException

from booking_reconciler.api.v1.schemas import (
    AuditEntrySchema,
    BookingResponseSchema,
    CreateBookingRequestSchema,
    RecordPaymentSessionRequestSchema,
)
from booking_reconciler.application.exceptions import DuplicateCorrelationKey, TransitionError
from booking_reconciler.application.ports.booking_store import BookingStorePort
from booking_reconciler.application.use_cases.create_booking import CreateBookingUseCase
from booking_reconciler.application.use_cases.record_payment_session import RecordPaymentSessionUseCase
from booking_reconciler.domain.entities.booking import Booking, BookingDraft
from booking_reconciler.wiring.dependencies import (
    get_booking_store,
    get_create_booking_use_case,
    get_record_payment_session_use_case,
)

router = APIRouter()


@router.post("/bookings", response_model=BookingResponseSchema, status_code=201)
def create_booking(
    req: CreateBookingRequestSchema,
    uc: CreateBookingUseCase = Depends(get_create_booking_use_case),
):
    try:
        booking = uc.execute(BookingDraft(**req.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _to_schema(booking)


@router.post("/bookings/{booking_id}/payment-session", response_model=BookingResponseSchema)
def record_payment_session(
    booking_id: str,
    req: RecordPaymentSessionRequestSchema,
    uc: RecordPaymentSessionUseCase = Depends(get_record_payment_session_use_case),
):
    try:
        booking = uc.execute(booking_id, req.checkout_session_id, req.payment_intent_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Booking not found")
    except (TransitionError, DuplicateCorrelationKey) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _to_schema(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponseSchema)
def get_booking(
    booking_id: str,
    store: BookingStorePort = Depends(get_booking_store),
):
    booking = store.find_by_id(booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return _to_schema(booking)


def _to_schema(booking: Booking) -> BookingResponseSchema:
    return BookingResponseSchema(
        id=booking.id,
        builder_id=booking.builder_id,
        session_type_id=booking.session_type_id,
        status=booking.status.value,
        version=booking.version,
        client_id=booking.client_id,
        client_email=booking.client_email,
        start_time=booking.start_time,
        end_time=booking.end_time,
        timezone=booking.timezone,
        amount=booking.amount,
        currency=booking.currency,
        amount_paid=booking.amount_paid,
        refund_pending=booking.refund_pending,
        refund_amount=booking.refund_amount,
        cancellation_reason=booking.cancellation_reason,
        audit_trail=[
            AuditEntrySchema(
                timestamp=entry.timestamp,
                from_status=entry.from_status.value,
                to_status=entry.to_status.value,
                triggering_event_id=entry.triggering_event_id,
            )
            for entry in booking.audit_trail
        ],
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )
