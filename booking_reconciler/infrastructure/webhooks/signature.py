from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from booking_reconciler.application.exceptions import VerificationError
from booking_reconciler.domain.entities.external_event import Provider


logger = logging.getLogger(__name__)

SIGNATURE_HEADERS: dict[Provider, str] = {
    Provider.CALENDLY: "Calendly-Webhook-Signature",
    Provider.STRIPE: "Stripe-Signature",
}
SIGNATURE_SCHEME = "v1"


@dataclass(frozen=True)
class WebhookSecrets:
    primary: str | None
    secondary: str | None = None

    def candidates(self) -> list[tuple[str, str]]:
        keys = []
        if self.primary:
            keys.append(("primary", self.primary))
        if self.secondary:
            keys.append(("secondary", self.secondary))
        return keys


def compute_signature(secret: str, raw_body: bytes, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def sign(secret: str, raw_body: bytes, timestamp: int) -> str:
    """Build a `t=...,v1=...` header for `raw_body`."""
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(secret, raw_body, timestamp)}"


def parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    timestamp: str | None = None
    signatures: list[str] = []
    for part in header.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            key, value = part.split("=", 1)
        except ValueError:
            raise VerificationError("Malformed signature header", code="malformed_header")
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME:
            if not _is_hex(value):
                raise VerificationError("Signature is not a hex digest", code="malformed_header")
            signatures.append(value)
    return timestamp, signatures


def _is_hex(value: str) -> bool:
    return bool(value) and value.isascii() and all(c in "0123456789abcdefABCDEF" for c in value)


class SignatureVerifier:
    def __init__(
        self,
        secrets: Mapping[Provider, WebhookSecrets],
        replay_window_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secrets = dict(secrets)
        self._replay_window = replay_window_seconds
        self._clock = clock

    def verify(
        self,
        provider: Provider,
        raw_body: bytes,
        signature_header: str | None,
        timestamp_header: str | None = None,
    ) -> None:
        """
        Check `raw_body` against the provider's signature header.

        Accepts a signature made with either the primary or the secondary secret
        so secrets can be rotated without dropping deliveries. Raises
        VerificationError on any failure.
        """
        if not signature_header:
            raise VerificationError("Missing webhook signature", code="missing_signature")

        keys = self._secrets.get(provider, WebhookSecrets(primary=None)).candidates()
        if not keys:
            logger.error("Webhook signing secret not configured", extra={"provider": provider.value})
            raise VerificationError("Webhook signing secret not configured", code="configuration_error")

        header_timestamp, signatures = parse_signature_header(signature_header)
        raw_timestamp = timestamp_header or header_timestamp
        if not raw_timestamp or not signatures:
            raise VerificationError("Signature header missing timestamp or signature", code="malformed_header")

        try:
            timestamp = int(raw_timestamp)
        except ValueError:
            raise VerificationError("Signature timestamp is not an integer", code="malformed_header")

        if abs(self._clock() - timestamp) > self._replay_window:
            raise VerificationError("Signature timestamp outside replay window", code="expired_timestamp")

        for key_name, secret in keys:
            expected = compute_signature(secret, raw_body, timestamp)
            expected_bytes = expected.encode("ascii")
            if any(hmac.compare_digest(expected_bytes, candidate.encode("ascii")) for candidate in signatures):
                if key_name == "secondary":
                    logger.info("Webhook verified with secondary signing key", extra={"provider": provider.value})
                return

        raise VerificationError("Invalid webhook signature", code="invalid_signature")
