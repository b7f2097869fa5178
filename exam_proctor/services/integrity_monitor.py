"""
Integrity Monitor - turns page signals into violations and applies the
tab-switch escalation policy
"""

import logging
from typing import Callable, Optional

from pydantic import BaseModel

from exam_proctor.config import settings
from exam_proctor.core.signals import SignalHub
from exam_proctor.models.session import PlatformSignal, Severity, ViolationEvent, ViolationType

logger = logging.getLogger(__name__)

# Signals whose browser action is blocked while the monitor is attached
SUPPRESSED_SIGNALS = (PlatformSignal.CONTEXT_MENU, PlatformSignal.COPY)


class IntegrityAssessment(BaseModel):
    """Decision for one signal. The controller applies it to the session."""
    violation: ViolationEvent
    counts_toward_limit: bool = False
    violation_count: int
    escalate: bool = False
    warning: Optional[str] = None


class IntegrityMonitor:
    """
    Subscribes to the SignalHub while attached and forwards every relevant
    signal to `on_signal` (the controller's event queue). The handler never
    touches session state itself; `assess` is the pure policy the controller
    runs when it consumes the queued signal.

    Only tab switches count toward `tab_switch_limit`. Context-menu and copy
    attempts are suppressed and logged but never escalate.
    """

    def __init__(self, on_signal: Callable[[PlatformSignal], None], tab_switch_limit: Optional[int] = None):
        self.tab_switch_limit = tab_switch_limit or settings.DEFAULT_TAB_SWITCH_LIMIT
        self._on_signal = on_signal
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self, hub: SignalHub) -> None:
        if self.attached:
            return
        self._unsubscribe = hub.subscribe(self._handle)
        logger.info(f"Integrity monitor attached (tab switch limit {self.tab_switch_limit})")

    def detach(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.info("Integrity monitor detached")

    def _handle(self, signal: PlatformSignal) -> bool:
        if signal == PlatformSignal.VISIBILITY_VISIBLE:
            return False
        self._on_signal(signal)
        return signal in SUPPRESSED_SIGNALS

    def remaining(self, violation_count: int) -> int:
        return max(0, self.tab_switch_limit - violation_count)

    def assess(self, signal: PlatformSignal, violation_count: int) -> Optional[IntegrityAssessment]:
        if signal == PlatformSignal.VISIBILITY_HIDDEN:
            count = violation_count + 1
            violation = ViolationEvent(
                type=ViolationType.TAB_SWITCH,
                description=f"Tab switch detected ({count})",
                severity=Severity.MEDIUM,
            )
            if count >= self.tab_switch_limit:
                return IntegrityAssessment(
                    violation=violation,
                    counts_toward_limit=True,
                    violation_count=count,
                    escalate=True,
                )
            return IntegrityAssessment(
                violation=violation,
                counts_toward_limit=True,
                violation_count=count,
                warning=f"Tab switch detected. Switches remaining: {self.remaining(count)}",
            )

        if signal == PlatformSignal.CONTEXT_MENU:
            violation = ViolationEvent(
                type=ViolationType.RIGHT_CLICK,
                description="Right-click attempt detected",
                severity=Severity.LOW,
            )
        elif signal == PlatformSignal.COPY:
            violation = ViolationEvent(
                type=ViolationType.COPY_PASTE,
                description="Copy attempt detected",
                severity=Severity.LOW,
            )
        else:
            return None

        return IntegrityAssessment(violation=violation, violation_count=violation_count)
