"""
Camera Monitor - live webcam feed and periodic still-image evidence for a
running session
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

import numpy as np

from exam_proctor.config import settings
from exam_proctor.core.camera import CameraBroker, CameraLease, encode_snapshot, mirror
from exam_proctor.models.session import Severity, ViolationEvent, ViolationType
from exam_proctor.utils.exceptions import CameraError, CameraPermissionError

logger = logging.getLogger(__name__)


class CameraStatus(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    DENIED = "denied"
    ERROR = "error"
    STOPPED = "stopped"


class CameraMonitor:
    """
    Holds the capture device for the duration of the exam.

    Failure to acquire (or losing the device mid-session) is reported through
    `on_violation` as a high-severity event; it never pauses the exam. Only
    the most recent snapshot is retained.
    """

    OWNER = "camera_monitor"

    def __init__(
        self,
        broker: CameraBroker,
        on_violation: Callable[[ViolationEvent], None],
        on_snapshot: Optional[Callable[[str], None]] = None,
        interval: Optional[float] = None
    ):
        self.broker = broker
        self.interval = settings.PROCTORING_SNAPSHOT_INTERVAL if interval is None else interval
        self.status = CameraStatus.INITIALIZING
        self.latest_snapshot: Optional[str] = None
        self._on_violation = on_violation
        self._on_snapshot = on_snapshot
        self._lease: Optional[CameraLease] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def holds_device(self) -> bool:
        return self._lease is not None and not self._lease.released

    async def start(self) -> CameraStatus:
        self.status = CameraStatus.INITIALIZING
        try:
            self._lease = await self.broker.acquire(self.OWNER)
        except CameraPermissionError as e:
            self.status = CameraStatus.DENIED
            logger.warning(f"Camera denied: {e}")
            self._on_violation(ViolationEvent(
                type=ViolationType.CAMERA_BLOCKED,
                description="Camera access was denied",
                severity=Severity.HIGH,
            ))
            return self.status
        except CameraError as e:
            self.status = CameraStatus.ERROR
            logger.warning(f"Camera error: {e}")
            self._on_violation(ViolationEvent(
                type=ViolationType.CAMERA_UNAVAILABLE,
                description=f"Camera unavailable: {e}",
                severity=Severity.HIGH,
            ))
            return self.status

        self.status = CameraStatus.ACTIVE
        self._task = asyncio.create_task(self._snapshot_loop(), name="camera-snapshots")
        return self.status

    async def _snapshot_loop(self) -> None:
        while self.status == CameraStatus.ACTIVE:
            await asyncio.sleep(self.interval)
            snapshot = await self.capture_snapshot()
            if snapshot and self._on_snapshot:
                self._on_snapshot(snapshot)

    async def _read(self) -> Optional[np.ndarray]:
        lease = self._lease
        if self.status != CameraStatus.ACTIVE or lease is None or lease.released:
            return None
        try:
            return await lease.read_frame()
        except CameraError as e:
            if lease.released:
                # Stopped while this read was waiting for the device
                return None
            # Device dropped mid-session: keep the exam running without evidence
            self.status = CameraStatus.ERROR
            logger.error(f"Camera lost during session: {e}")
            await self._release()
            self._on_violation(ViolationEvent(
                type=ViolationType.CAMERA_UNAVAILABLE,
                description=f"Camera unavailable: {e}",
                severity=Severity.HIGH,
            ))
            return None

    async def capture_snapshot(self) -> Optional[str]:
        """Grab a still frame now; returns a JPEG data URL or None when no feed is available"""
        frame = await self._read()
        if frame is None:
            return None
        try:
            snapshot = encode_snapshot(frame)
        except CameraError as e:
            logger.warning(f"Snapshot encoding failed: {e}")
            return None
        self.latest_snapshot = snapshot
        return snapshot

    async def preview_frame(self) -> Optional[np.ndarray]:
        frame = await self._read()
        return mirror(frame) if frame is not None else None

    async def _release(self) -> None:
        lease, self._lease = self._lease, None
        if lease is not None:
            await lease.release()

    async def stop(self) -> None:
        """Stop the snapshot schedule and release the device"""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._release()
        if self.status in (CameraStatus.ACTIVE, CameraStatus.INITIALIZING):
            self.status = CameraStatus.STOPPED
