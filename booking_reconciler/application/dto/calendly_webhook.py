from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CalendlyTrackingDTO(BaseModel):
    utm_campaign: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None


class CalendlyCancellationDTO(BaseModel):
    canceled_by: str | None = None
    reason: str | None = None
    canceler_type: str | None = None  # "host" | "invitee"


class CalendlyScheduledEventDTO(BaseModel):
    uri: str | None = None
    name: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    event_type: str | None = None


class CalendlyPayloadDTO(BaseModel):
    uri: str | None = None
    email: str | None = None
    name: str | None = None
    timezone: str | None = None
    status: str | None = None
    rescheduled: bool = False
    old_invitee: str | None = None
    new_invitee: str | None = None
    # no-show payloads reference the invitee instead of being one
    invitee: str | None = None
    scheduled_event: CalendlyScheduledEventDTO | None = None
    tracking: CalendlyTrackingDTO | None = None
    cancellation: CalendlyCancellationDTO | None = None


class CalendlyWebhookDTO(BaseModel):
    event: str
    created_at: datetime | None = None
    created_by: str | None = None
    payload: CalendlyPayloadDTO = Field(default_factory=CalendlyPayloadDTO)
