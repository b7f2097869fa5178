"""
Pre-Flight Gate - Instructions -> System Check -> Identity Verification -> Ready
"""

import logging
from typing import Dict, List, Optional

from exam_proctor.config import settings
from exam_proctor.core.camera import CameraBroker, CameraLease, encode_snapshot
from exam_proctor.core.exam_client import ExamServiceClient
from exam_proctor.models.session import Exam, GateStage, PlatformReport, ReadinessToken
from exam_proctor.utils.exceptions import (
    CameraError, CameraPermissionError, GateBlockedError, ReadinessError
)

logger = logging.getLogger(__name__)

SYSTEM_CHECKS = ("browser", "camera", "fullscreen", "notifications")

STAGE_ORDER = [
    GateStage.INSTRUCTIONS,
    GateStage.SYSTEM_CHECK,
    GateStage.IDENTITY_VERIFICATION,
    GateStage.READY,
]

CAMERA_REQUIRED_REASON = "Camera access is required for proctored exams"
IDENTITY_REQUIRED_REASON = "Capture and confirm a photo of yourself to verify your identity"
RULES_REQUIRED_REASON = "You must acknowledge the exam rules before starting"


class PreFlightGate:
    """
    Readiness wizard for one exam.

    Moving forward always re-validates the step being left; moving back is
    never validated. A refused transition raises GateBlockedError and leaves
    `stage` untouched. The camera stream opened for the system check is
    reused for the identity photo and released on reaching READY, so the
    in-exam camera monitor can acquire the device for itself.
    """

    OWNER = "preflight"

    def __init__(
        self,
        exam_id: str,
        client: ExamServiceClient,
        broker: CameraBroker,
        platform: Optional[PlatformReport] = None,
        browser_allow_list: Optional[List[str]] = None
    ):
        self.exam_id = exam_id
        self.client = client
        self.broker = broker
        self.platform = platform or PlatformReport()
        self.browser_allow_list = browser_allow_list or settings.BROWSER_ALLOW_LIST

        self.exam: Optional[Exam] = None
        self.stage = GateStage.INSTRUCTIONS
        self.checks: Dict[str, bool] = {name: False for name in SYSTEM_CHECKS}
        self.camera_failure: Optional[str] = None
        self.pending_identity: Optional[str] = None
        self.identity_snapshot: Optional[str] = None
        self.rules_acknowledged = False

        self._lease: Optional[CameraLease] = None
        self._token: Optional[ReadinessToken] = None
        self._handed_off = False

    async def load(self) -> Exam:
        self.exam = await self.client.get_exam(self.exam_id)
        return self.exam

    def _require_exam(self) -> Exam:
        if self.exam is None:
            raise ReadinessError("Exam details have not been loaded")
        return self.exam

    @property
    def instructions(self) -> List[str]:
        exam = self._require_exam()
        rules = [
            "Read each question carefully before answering.",
            "You can navigate between questions using the navigation panel.",
            "Your progress is automatically saved.",
            "Once submitted, you cannot change your answers.",
            "The exam will auto-submit when time runs out.",
        ]
        if exam.is_proctored:
            rules.append("Keep your camera on throughout the exam.")
            rules.append("Do not switch tabs or windows during the exam.")
        rules.append("Use of external resources is prohibited unless specified.")
        return rules

    @property
    def needs_camera(self) -> bool:
        exam = self._require_exam()
        return exam.camera_required or exam.identity_required

    @property
    def required_checks(self) -> List[str]:
        if not self._require_exam().is_proctored:
            return []
        return list(SYSTEM_CHECKS)

    def failed_checks(self) -> List[str]:
        return [name for name in self.required_checks if not self.checks[name]]

    # ------------------------------------------------------------------
    # System checks
    # ------------------------------------------------------------------

    async def run_system_checks(self) -> Dict[str, bool]:
        user_agent = self.platform.user_agent
        self.checks["browser"] = any(marker in user_agent for marker in self.browser_allow_list)

        if self.needs_camera:
            await self._probe_camera()
        else:
            self.checks["camera"] = True

        self.checks["fullscreen"] = self.platform.fullscreen_enabled
        self.checks["notifications"] = self.platform.notifications_supported

        logger.info(f"System checks for exam {self.exam_id}: {self.checks}")
        return dict(self.checks)

    async def _probe_camera(self) -> None:
        if self._lease is not None and not self._lease.released:
            self.checks["camera"] = True
            return
        try:
            self._lease = await self.broker.acquire(self.OWNER)
        except CameraPermissionError:
            self.checks["camera"] = False
            self.camera_failure = "Camera access was denied"
        except CameraError as e:
            self.checks["camera"] = False
            self.camera_failure = f"Camera error: {e}"
        else:
            self.checks["camera"] = True
            self.camera_failure = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _validate_system_check(self) -> None:
        failed = self.failed_checks()
        if not failed:
            return
        if "camera" in failed:
            raise GateBlockedError(self.camera_failure or CAMERA_REQUIRED_REASON)
        labels = ", ".join(failed)
        raise GateBlockedError(f"System checks failed: {labels}")

    def _validate_identity(self) -> None:
        if self.identity_snapshot is None:
            raise GateBlockedError(IDENTITY_REQUIRED_REASON)
        if not self.rules_acknowledged:
            raise GateBlockedError(RULES_REQUIRED_REASON)

    async def advance(self) -> GateStage:
        """Move one step forward, validating the step being left"""
        exam = self._require_exam()

        if self.stage == GateStage.INSTRUCTIONS:
            self.stage = GateStage.SYSTEM_CHECK
            await self.run_system_checks()
        elif self.stage == GateStage.SYSTEM_CHECK:
            self._validate_system_check()
            if exam.identity_required:
                self.stage = GateStage.IDENTITY_VERIFICATION
            else:
                await self._reach_ready()
        elif self.stage == GateStage.IDENTITY_VERIFICATION:
            self._validate_identity()
            await self._reach_ready()

        return self.stage

    async def advance_to(self, target: GateStage) -> GateStage:
        """Walk forward to `target`, re-validating every intermediate step"""
        while STAGE_ORDER.index(self.stage) < STAGE_ORDER.index(target):
            await self.advance()
        return self.stage

    def back(self) -> GateStage:
        if self._handed_off:
            raise ReadinessError("Exam session already started")

        if self.stage == GateStage.READY:
            self._token = None
            exam = self._require_exam()
            self.stage = GateStage.IDENTITY_VERIFICATION if exam.identity_required else GateStage.SYSTEM_CHECK
        elif self.stage == GateStage.IDENTITY_VERIFICATION:
            self.stage = GateStage.SYSTEM_CHECK
        elif self.stage == GateStage.SYSTEM_CHECK:
            self.stage = GateStage.INSTRUCTIONS
        return self.stage

    async def _reach_ready(self) -> None:
        await self.release_camera()
        self.stage = GateStage.READY
        self._token = ReadinessToken(
            exam_id=self.exam_id,
            system_checks=dict(self.checks),
            identity_snapshot=self.identity_snapshot,
            acknowledged_rules=self.rules_acknowledged,
        )
        logger.info(f"Pre-flight complete for exam {self.exam_id}")

    # ------------------------------------------------------------------
    # Identity verification
    # ------------------------------------------------------------------

    def _require_stage(self, stage: GateStage) -> None:
        if self.stage != stage:
            raise GateBlockedError(f"Not available during {self.stage.value.replace('_', ' ')}")

    async def capture_identity(self) -> str:
        self._require_stage(GateStage.IDENTITY_VERIFICATION)
        if self._lease is None or self._lease.released:
            await self._probe_camera()
            if not self.checks["camera"]:
                raise GateBlockedError(self.camera_failure or CAMERA_REQUIRED_REASON)

        frame = await self._lease.read_frame()
        self.pending_identity = encode_snapshot(frame)
        self.identity_snapshot = None
        return self.pending_identity

    def confirm_identity(self) -> str:
        self._require_stage(GateStage.IDENTITY_VERIFICATION)
        if self.pending_identity is None:
            raise GateBlockedError("No photo has been captured yet")
        self.identity_snapshot = self.pending_identity
        return self.identity_snapshot

    def retake_identity(self) -> None:
        self._require_stage(GateStage.IDENTITY_VERIFICATION)
        self.pending_identity = None
        self.identity_snapshot = None

    def acknowledge_rules(self, acknowledged: bool = True) -> None:
        self.rules_acknowledged = acknowledged

    # ------------------------------------------------------------------
    # Hand-off
    # ------------------------------------------------------------------

    @property
    def handed_off(self) -> bool:
        return self._handed_off

    def hand_off(self) -> ReadinessToken:
        """Return the readiness token. It can be taken exactly once."""
        if self.stage != GateStage.READY or self._token is None:
            raise ReadinessError("Pre-flight checks are not complete")
        if self._handed_off:
            raise ReadinessError("Readiness token already consumed")
        self._handed_off = True
        return self._token

    async def release_camera(self) -> None:
        lease, self._lease = self._lease, None
        if lease is not None:
            await lease.release()
