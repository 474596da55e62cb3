class ReconciliationError(RuntimeError):
    """Base class for webhook reconciliation failures."""
    pass


class VerificationError(ReconciliationError):
    """Raised when a webhook fails authenticity checks. Never retried."""

    def __init__(self, message: str, code: str = "invalid_signature") -> None:
        super().__init__(message)
        self.code = code


class NormalizationError(ReconciliationError):
    """Raised when a signed payload cannot be mapped to an ExternalEvent."""
    pass


class TransitionError(ReconciliationError):
    """Raised for an unexpected state/event combination."""
    pass


class NoMatchingBooking(TransitionError):
    """Raised when no booking matches the event's correlation keys."""
    pass


class AmountMismatch(TransitionError):
    """Raised when a payment does not match the booking's expected amount."""

    def __init__(
        self,
        message: str,
        expected_amount: int | None = None,
        expected_currency: str | None = None,
        actual_amount: int | None = None,
        actual_currency: str | None = None,
    ) -> None:
        super().__init__(message)
        self.expected_amount = expected_amount
        self.expected_currency = expected_currency
        self.actual_amount = actual_amount
        self.actual_currency = actual_currency


class ConcurrencyConflict(ReconciliationError):
    """Raised when the stored booking version differs from the expected one."""

    def __init__(self, booking_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Booking {booking_id} is at version {actual_version}, expected {expected_version}"
        )
        self.booking_id = booking_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class PersistenceError(ReconciliationError):
    """Raised when the store fails for reasons other than a version conflict."""
    pass


class DuplicateCorrelationKey(PersistenceError):
    """Raised when an external id is already owned by another booking."""
    pass


class EventInFlight(ReconciliationError):
    """Raised when another delivery of the same event is still being processed."""
    pass


class DispatchError(RuntimeError):
    """Raised by outbound collaborators (email, refunds)."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable
