"""
Tests for camera ownership and the in-exam camera monitor
"""

import asyncio
import pytest
import numpy as np
from unittest.mock import MagicMock

from exam_proctor.core.camera import CameraBroker, encode_snapshot, mirror
from exam_proctor.models.session import Severity, ViolationType
from exam_proctor.services.camera_monitor import CameraMonitor, CameraStatus
from exam_proctor.utils.exceptions import (
    CameraBusyError, CameraPermissionError, CameraUnavailableError
)


class TestCameraBroker:
    @pytest.mark.asyncio
    async def test_exclusive_ownership(self, camera_broker, camera_device):
        """A second holder is refused until the first lease is released"""
        lease = await camera_broker.acquire("preflight")
        assert camera_broker.owner == "preflight"
        assert camera_device.is_open is True

        with pytest.raises(CameraBusyError) as exc_info:
            await camera_broker.acquire("camera_monitor")
        assert exc_info.value.owner == "preflight"

        await lease.release()
        await lease.release()
        assert camera_device.release_calls == 1
        assert camera_broker.owner is None

        second = await camera_broker.acquire("camera_monitor")
        assert camera_broker.owner == "camera_monitor"
        await second.release()

    @pytest.mark.asyncio
    async def test_failed_open_frees_the_broker(self, make_capture_device):
        device = make_capture_device(open_error=CameraPermissionError())
        broker = CameraBroker(lambda: device)

        with pytest.raises(CameraPermissionError):
            await broker.acquire("preflight")
        assert broker.owner is None

    @pytest.mark.asyncio
    async def test_unexpected_open_error_reported_as_unavailable(self, make_capture_device):
        device = make_capture_device(open_error=RuntimeError("backend crashed"))
        broker = CameraBroker(lambda: device)

        with pytest.raises(CameraUnavailableError):
            await broker.acquire("preflight")

    @pytest.mark.asyncio
    async def test_released_lease_cannot_read(self, camera_broker):
        lease = await camera_broker.acquire("preflight")
        await lease.release()

        with pytest.raises(CameraUnavailableError):
            await lease.read_frame()


class TestFrameHelpers:
    def test_mirror_flips_horizontally(self, camera_device):
        frame = camera_device.read()
        assert np.array_equal(mirror(frame), frame[:, ::-1])

    def test_encode_snapshot_is_jpeg_data_url(self, camera_device):
        snapshot = encode_snapshot(camera_device.read(), quality=50)
        assert snapshot.startswith("data:image/jpeg;base64,")
        assert len(snapshot) > len("data:image/jpeg;base64,")


class TestCameraMonitor:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, camera_broker):
        on_violation = MagicMock()
        monitor = CameraMonitor(camera_broker, on_violation, interval=3600)

        assert await monitor.start() == CameraStatus.ACTIVE
        assert camera_broker.owner == CameraMonitor.OWNER

        await monitor.stop()
        assert monitor.status == CameraStatus.STOPPED
        assert camera_broker.owner is None
        on_violation.assert_not_called()

    @pytest.mark.asyncio
    async def test_permission_denied_is_high_severity_violation(self, make_capture_device):
        """Denied camera raises a violation and never pauses the exam"""
        broker = CameraBroker(lambda: make_capture_device(open_error=CameraPermissionError()))
        on_violation = MagicMock()
        monitor = CameraMonitor(broker, on_violation, interval=3600)

        assert await monitor.start() == CameraStatus.DENIED

        violation = on_violation.call_args.args[0]
        assert violation.type == ViolationType.CAMERA_BLOCKED
        assert violation.severity == Severity.HIGH
        assert violation.description == "Camera access was denied"

    @pytest.mark.asyncio
    async def test_device_error(self, make_capture_device):
        broker = CameraBroker(lambda: make_capture_device(open_error=CameraUnavailableError("Could not open camera 0")))
        on_violation = MagicMock()
        monitor = CameraMonitor(broker, on_violation, interval=3600)

        assert await monitor.start() == CameraStatus.ERROR
        assert on_violation.call_args.args[0].type == ViolationType.CAMERA_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_busy_device_is_an_error(self, camera_broker):
        held = await camera_broker.acquire("preflight")
        monitor = CameraMonitor(camera_broker, MagicMock(), interval=3600)

        assert await monitor.start() == CameraStatus.ERROR
        await held.release()

    @pytest.mark.asyncio
    async def test_snapshot_retains_only_latest(self, camera_broker):
        monitor = CameraMonitor(camera_broker, MagicMock(), interval=3600)
        await monitor.start()

        first = await monitor.capture_snapshot()
        second = await monitor.capture_snapshot()

        assert first.startswith("data:image/jpeg;base64,")
        assert monitor.latest_snapshot == second
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_preview_is_mirrored(self, camera_broker, camera_device):
        monitor = CameraMonitor(camera_broker, MagicMock(), interval=3600)
        await monitor.start()

        preview = await monitor.preview_frame()

        assert np.array_equal(preview, camera_device.read()[:, ::-1])
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_no_snapshot_without_feed(self, camera_broker):
        monitor = CameraMonitor(camera_broker, MagicMock(), interval=3600)
        assert await monitor.capture_snapshot() is None

    @pytest.mark.asyncio
    async def test_device_lost_mid_session(self, camera_broker, camera_device):
        """Losing the device mid-session releases it and reports a violation"""
        on_violation = MagicMock()
        monitor = CameraMonitor(camera_broker, on_violation, interval=3600)
        await monitor.start()

        camera_device.read_error = CameraUnavailableError("Failed to read frame from camera")
        assert await monitor.capture_snapshot() is None

        assert monitor.status == CameraStatus.ERROR
        assert camera_broker.owner is None
        assert on_violation.call_args.args[0].severity == Severity.HIGH
        await monitor.stop()
        assert monitor.status == CameraStatus.ERROR

    @pytest.mark.asyncio
    async def test_interval_snapshots_forwarded(self, camera_broker):
        on_snapshot = MagicMock()
        monitor = CameraMonitor(camera_broker, MagicMock(), on_snapshot=on_snapshot, interval=0.01)
        await monitor.start()

        await asyncio.sleep(0.1)
        await monitor.stop()

        assert on_snapshot.call_count >= 1
        assert on_snapshot.call_args.args[0].startswith("data:image/jpeg;base64,")


class TestDeviceAccess:
    @pytest.mark.asyncio
    async def test_release_waits_for_in_flight_read(self, slow_camera_device):
        broker = CameraBroker(lambda: slow_camera_device)
        lease = await broker.acquire("camera_monitor")

        reading = asyncio.create_task(lease.read_frame())
        await asyncio.sleep(0.01)
        await lease.release()
        frame = await reading

        assert frame.shape == (240, 320, 3)
        assert slow_camera_device.release_during_read is False
        assert slow_camera_device.release_calls == 1

    @pytest.mark.asyncio
    async def test_reads_and_stop_never_overlap(self, slow_camera_device):
        """Interval, on-demand and stop-time access reach the device one at a time"""
        broker = CameraBroker(lambda: slow_camera_device)
        on_violation = MagicMock()
        on_snapshot = MagicMock()
        monitor = CameraMonitor(broker, on_violation, on_snapshot=on_snapshot, interval=0.01)
        await monitor.start()

        snapshots = await asyncio.gather(monitor.capture_snapshot(), monitor.capture_snapshot())
        pending = asyncio.create_task(monitor.capture_snapshot())
        await asyncio.sleep(0.01)
        await monitor.stop()
        await pending

        assert all(snapshot.startswith("data:image/jpeg;base64,") for snapshot in snapshots)
        assert slow_camera_device.max_concurrent_reads == 1
        assert slow_camera_device.release_during_read is False
        assert slow_camera_device.release_calls == 1
        assert monitor.status == CameraStatus.STOPPED
        assert broker.owner is None
        on_violation.assert_not_called()
