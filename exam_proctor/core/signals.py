import logging
from typing import Callable, List

from exam_proctor.models.session import PlatformSignal

logger = logging.getLogger(__name__)

# A handler returns True when the platform's default action must be prevented
SignalHandler = Callable[[PlatformSignal], bool]


class SignalHub:
    """Fan-out of platform signals (visibility, copy, context menu) to subscribers"""

    def __init__(self):
        self._handlers: List[SignalHandler] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: SignalHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, signal: PlatformSignal) -> bool:
        """Deliver a signal; returns whether any subscriber asked to prevent the default action"""
        if not self._handlers:
            logger.debug(f"Signal {signal.value} dropped: no subscribers")
            return False

        prevent_default = False
        for handler in list(self._handlers):
            if handler(signal):
                prevent_default = True
        return prevent_default
