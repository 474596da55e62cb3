from __future__ import annotations

import logging
from typing import Any, Mapping

from booking_reconciler.application.ports.notifier import NotifierPort


class MockNotifier(NotifierPort):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self._logger = logging.getLogger(__name__)

    def send(self, template_id: str, recipient: str, context: Mapping[str, Any]) -> None:
        self.sent.append((template_id, recipient, dict(context)))
        self._logger.info(
            "Mock email send", extra={"template_id": template_id, "booking_id": context.get("booking_id")}
        )
