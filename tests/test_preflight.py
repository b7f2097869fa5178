"""
Tests for the pre-flight readiness gate
"""

import pytest

from exam_proctor.core.camera import CameraBroker
from exam_proctor.models.session import GateStage, PlatformReport
from exam_proctor.services.preflight import (
    IDENTITY_REQUIRED_REASON, RULES_REQUIRED_REASON, PreFlightGate
)
from exam_proctor.utils.exceptions import (
    CameraPermissionError, GateBlockedError, ReadinessError
)

CHROME = PlatformReport(
    user_agent="Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36",
    fullscreen_enabled=True,
    notifications_supported=True,
)


async def open_gate(client, broker, platform=CHROME):
    gate = PreFlightGate("exam-1", client, broker, platform=platform)
    await gate.load()
    return gate


class TestUnproctoredExam:
    @pytest.mark.asyncio
    async def test_no_checks_required(self, make_exam_client, make_exam_payload, camera_broker):
        """Failed checks do not block an exam that is not proctored"""
        client = make_exam_client(make_exam_payload(proctored=False))
        gate = await open_gate(client, camera_broker, platform=PlatformReport(user_agent="curl/8.0"))

        assert await gate.advance() == GateStage.SYSTEM_CHECK
        assert gate.checks["browser"] is False
        assert gate.required_checks == []

        assert await gate.advance() == GateStage.READY
        assert camera_broker.owner is None

        token = gate.hand_off()
        assert token.exam_id == "exam-1"
        assert token.identity_snapshot is None

    @pytest.mark.asyncio
    async def test_instructions_without_proctoring_rules(self, make_exam_client, make_exam_payload, camera_broker):
        client = make_exam_client(make_exam_payload(proctored=False))
        gate = await open_gate(client, camera_broker)

        assert not any("camera" in rule.lower() for rule in gate.instructions)


class TestSystemCheck:
    @pytest.mark.asyncio
    async def test_all_checks_pass(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)

        await gate.advance()

        assert gate.checks == {"browser": True, "camera": True, "fullscreen": True, "notifications": True}
        assert camera_broker.owner == PreFlightGate.OWNER

    @pytest.mark.asyncio
    async def test_camera_denied_blocks_without_changing_stage(self, mock_exam_client, make_capture_device):
        """A refused transition leaves the stage where it was"""
        broker = CameraBroker(lambda: make_capture_device(open_error=CameraPermissionError()))
        gate = await open_gate(mock_exam_client, broker)
        await gate.advance()

        with pytest.raises(GateBlockedError) as exc_info:
            await gate.advance()

        assert exc_info.value.reason == "Camera access was denied"
        assert gate.stage == GateStage.SYSTEM_CHECK

    @pytest.mark.asyncio
    async def test_unsupported_browser_blocks(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker, platform=PlatformReport(
            user_agent="curl/8.0", fullscreen_enabled=True, notifications_supported=True
        ))
        await gate.advance()

        with pytest.raises(GateBlockedError) as exc_info:
            await gate.advance()

        assert exc_info.value.reason == "System checks failed: browser"
        await gate.release_camera()

    @pytest.mark.asyncio
    async def test_camera_busy_is_reported(self, mock_exam_client, camera_broker):
        held = await camera_broker.acquire("another_app")
        gate = await open_gate(mock_exam_client, camera_broker)

        await gate.advance()

        assert gate.checks["camera"] is False
        assert "another_app" in gate.camera_failure
        await held.release()

    @pytest.mark.asyncio
    async def test_proctored_instructions(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)

        assert "Keep your camera on throughout the exam." in gate.instructions
        assert "Do not switch tabs or windows during the exam." in gate.instructions


class TestIdentityVerification:
    @pytest.mark.asyncio
    async def test_full_flow(self, mock_exam_client, camera_broker):
        """Photo captured, confirmed and rules acknowledged before READY"""
        gate = await open_gate(mock_exam_client, camera_broker)
        assert await gate.advance_to(GateStage.IDENTITY_VERIFICATION) == GateStage.IDENTITY_VERIFICATION

        with pytest.raises(GateBlockedError) as exc_info:
            await gate.advance()
        assert exc_info.value.reason == IDENTITY_REQUIRED_REASON

        photo = await gate.capture_identity()
        assert photo.startswith("data:image/jpeg;base64,")

        with pytest.raises(GateBlockedError):
            await gate.advance()

        gate.confirm_identity()
        with pytest.raises(GateBlockedError) as exc_info:
            await gate.advance()
        assert exc_info.value.reason == RULES_REQUIRED_REASON
        assert gate.stage == GateStage.IDENTITY_VERIFICATION

        gate.acknowledge_rules(True)
        assert await gate.advance() == GateStage.READY
        assert camera_broker.owner is None

        token = gate.hand_off()
        assert token.identity_snapshot == photo
        assert token.acknowledged_rules is True

    @pytest.mark.asyncio
    async def test_retake_clears_photo(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)
        await gate.advance_to(GateStage.IDENTITY_VERIFICATION)

        await gate.capture_identity()
        gate.confirm_identity()
        gate.retake_identity()

        assert gate.pending_identity is None
        assert gate.identity_snapshot is None
        await gate.release_camera()

    @pytest.mark.asyncio
    async def test_confirm_requires_capture(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)
        await gate.advance_to(GateStage.IDENTITY_VERIFICATION)

        with pytest.raises(GateBlockedError):
            gate.confirm_identity()
        await gate.release_camera()

    @pytest.mark.asyncio
    async def test_capture_outside_identity_step(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)

        with pytest.raises(GateBlockedError):
            await gate.capture_identity()

    @pytest.mark.asyncio
    async def test_identity_skipped_when_not_required(self, make_exam_client, make_exam_payload, camera_broker):
        client = make_exam_client(make_exam_payload(identity=False))
        gate = await open_gate(client, camera_broker)

        assert await gate.advance_to(GateStage.READY) == GateStage.READY
        assert gate.hand_off().identity_snapshot is None


class TestHandOff:
    @pytest.mark.asyncio
    async def test_token_taken_exactly_once(self, make_exam_client, make_exam_payload, camera_broker):
        client = make_exam_client(make_exam_payload(identity=False))
        gate = await open_gate(client, camera_broker)
        await gate.advance_to(GateStage.READY)

        gate.hand_off()
        with pytest.raises(ReadinessError):
            gate.hand_off()
        with pytest.raises(ReadinessError):
            gate.back()

    @pytest.mark.asyncio
    async def test_not_ready(self, mock_exam_client, camera_broker):
        gate = await open_gate(mock_exam_client, camera_broker)
        with pytest.raises(ReadinessError):
            gate.hand_off()

    @pytest.mark.asyncio
    async def test_back_from_ready_revokes_token(self, make_exam_client, make_exam_payload, camera_broker):
        """Going back is never validated and invalidates the issued token"""
        client = make_exam_client(make_exam_payload(identity=False))
        gate = await open_gate(client, camera_broker)
        await gate.advance_to(GateStage.READY)

        assert gate.back() == GateStage.SYSTEM_CHECK
        with pytest.raises(ReadinessError):
            gate.hand_off()

        assert gate.back() == GateStage.INSTRUCTIONS
        assert gate.back() == GateStage.INSTRUCTIONS

    @pytest.mark.asyncio
    async def test_exam_must_be_loaded(self, mock_exam_client, camera_broker):
        gate = PreFlightGate("exam-1", mock_exam_client, camera_broker)
        with pytest.raises(ReadinessError):
            await gate.advance()
