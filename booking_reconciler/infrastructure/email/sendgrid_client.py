from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from booking_reconciler.application.exceptions import DispatchError


class SendGridClient:
    def __init__(
        self,
        api_key: str,
        api_url: str,
        from_email: str,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._from_email = from_email
        self._client = httpx.Client(timeout=10.0, transport=transport)
        self._logger = logging.getLogger(__name__)

    def send_template(self, template_id: str, recipient: str, data: Mapping[str, Any]) -> None:
        payload = {
            "from": {"email": self._from_email},
            "personalizations": [
                {
                    "to": [{"email": recipient}],
                    "dynamic_template_data": dict(data),
                }
            ],
            "template_id": template_id,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            resp = self._client.post(self._api_url, json=payload, headers=headers)
        except httpx.TransportError as e:
            raise DispatchError(f"SendGrid unreachable: {e}", retryable=True) from e

        if resp.status_code >= 400:
            try:
                errors = resp.json().get("errors", [])
                error_message = "; ".join(str(err.get("message")) for err in errors) or resp.text
            except ValueError:
                error_message = resp.text

            self._logger.error(
                "SendGrid send failed",
                extra={
                    "status": resp.status_code,
                    "error_message": error_message,
                    "template_id": template_id,
                },
            )
            retryable = resp.status_code == 429 or resp.status_code >= 500
            raise DispatchError(f"SendGrid returned {resp.status_code}: {error_message}", retryable=retryable)
