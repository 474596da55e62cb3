from __future__ import annotations

from typing import Any, Mapping

from booking_reconciler.application.ports.notifier import NotifierPort
from booking_reconciler.infrastructure.email.sendgrid_client import SendGridClient


class SendGridNotifier(NotifierPort):
    def __init__(self, client: SendGridClient) -> None:
        self._client = client

    def send(self, template_id: str, recipient: str, context: Mapping[str, Any]) -> None:
        self._client.send_template(template_id=template_id, recipient=recipient, data=context)
