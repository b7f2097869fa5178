"""
Capture device access with exclusive ownership.

Most platforms allow a single active consumer of a webcam, so every holder
(pre-flight identity capture, then the in-exam camera monitor) goes through
one CameraBroker and must release its lease before the next holder acquires.
"""

import asyncio
import base64
import logging
import os
import sys
from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from exam_proctor.config import settings
from exam_proctor.utils.exceptions import (
    CameraBusyError, CameraError, CameraPermissionError, CameraUnavailableError
)

logger = logging.getLogger(__name__)


class CaptureDevice(Protocol):
    def open(self) -> None: ...

    def read(self) -> np.ndarray: ...

    def release(self) -> None: ...


class OpenCVCaptureDevice:
    """Webcam backed by cv2.VideoCapture"""

    def __init__(
        self,
        index: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None
    ):
        self.index = settings.CAMERA_INDEX if index is None else index
        self.width = width or settings.CAMERA_FRAME_WIDTH
        self.height = height or settings.CAMERA_FRAME_HEIGHT
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        # A device node we are not allowed to open is a permission refusal,
        # anything else that stops VideoCapture from opening is a device error.
        node = f"/dev/video{self.index}"
        if sys.platform.startswith("linux") and os.path.exists(node) \
                and not os.access(node, os.R_OK | os.W_OK):
            raise CameraPermissionError(f"Permission denied for {node}")

        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(f"Could not open camera {self.index}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture

    def read(self) -> np.ndarray:
        if self._capture is None:
            raise CameraUnavailableError("Camera is not open")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraUnavailableError("Failed to read frame from camera")
        return frame

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


class CameraLease:
    """Exclusive handle on the capture device held by one owner"""

    def __init__(self, broker: "CameraBroker", owner: str, device: CaptureDevice):
        self.owner = owner
        self._broker = broker
        self._device = device
        self._released = False
        # cv2.VideoCapture is not thread-safe; one executor call at a time
        self._io_lock = asyncio.Lock()

    @property
    def released(self) -> bool:
        return self._released

    async def read_frame(self) -> np.ndarray:
        async with self._io_lock:
            if self._released:
                raise CameraUnavailableError("Camera lease already released")
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(None, self._device.read)
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; keep the device until it returns
                await asyncio.wait([future])
                raise

    async def release(self) -> None:
        """Stop the stream and hand the device back. Safe to call twice."""
        if self._released:
            return
        self._released = True
        loop = asyncio.get_running_loop()
        try:
            # Waits for an in-flight read to finish before closing the device
            async with self._io_lock:
                await loop.run_in_executor(None, self._device.release)
        finally:
            self._broker._forget(self)
            logger.info(f"Camera released by {self.owner}")


class CameraBroker:
    def __init__(self, device_factory: Optional[Callable[[], CaptureDevice]] = None):
        self._device_factory = device_factory or OpenCVCaptureDevice
        self._lease: Optional[CameraLease] = None

    @property
    def owner(self) -> Optional[str]:
        return self._lease.owner if self._lease else None

    async def acquire(self, owner: str) -> CameraLease:
        if self._lease is not None:
            raise CameraBusyError(self._lease.owner)

        device = self._device_factory()
        lease = CameraLease(self, owner, device)
        # Reserve before the first await so a concurrent acquire is refused
        self._lease = lease

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, device.open)
        except CameraError:
            self._lease = None
            raise
        except Exception as e:
            self._lease = None
            raise CameraUnavailableError(f"Camera error: {e}") from e

        logger.info(f"Camera acquired by {owner}")
        return lease

    def _forget(self, lease: CameraLease) -> None:
        if self._lease is lease:
            self._lease = None


def mirror(frame: np.ndarray) -> np.ndarray:
    """Flip horizontally so the preview reads like a mirror"""
    return cv2.flip(frame, 1)


def encode_snapshot(frame: np.ndarray, quality: Optional[int] = None) -> str:
    """Encode a frame as a JPEG data URL"""
    quality = settings.SNAPSHOT_JPEG_QUALITY if quality is None else quality
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise CameraUnavailableError("Failed to encode snapshot")
    return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")
