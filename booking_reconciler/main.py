import logging

from fastapi import FastAPI

from booking_reconciler.api.v1.bookings import router as bookings_router
from booking_reconciler.api.webhooks import router as webhooks_router
from booking_reconciler.core.config import settings

class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in (
            "alert", "provider", "event_id", "event_kind", "booking_id",
            "intent", "outcome", "status", "attempt", "reason", "error",
        ):
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


handler = logging.StreamHandler()
handler.setFormatter(ContextFormatter("%(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

app = FastAPI(title="Booking Webhook Reconciler", version="1.0.0")

app.include_router(webhooks_router, tags=["webhooks"])
app.include_router(bookings_router, tags=["bookings"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
