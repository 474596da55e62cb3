from abc import ABC, abstractmethod
from typing import Any, Mapping


class NotifierPort(ABC):
    @abstractmethod
    def send(self, template_id: str, recipient: str, context: Mapping[str, Any]) -> None:
        """Send a templated email. Raises DispatchError on failure."""
        raise NotImplementedError
