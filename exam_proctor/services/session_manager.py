"""
Registry of pre-flight gates and running sessions, keyed by exam id
"""

import logging
from typing import Callable, Dict, Optional

from exam_proctor.core.camera import CameraBroker
from exam_proctor.core.exam_client import ExamServiceClient
from exam_proctor.models.session import PlatformReport, SessionStatus
from exam_proctor.services.preflight import PreFlightGate
from exam_proctor.services.session_controller import SessionController
from exam_proctor.utils.exceptions import ExamServiceError, ReadinessError, SessionStateError

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the shared Exam Service client and camera broker for the bridge process"""

    def __init__(
        self,
        client_factory: Optional[Callable[[], ExamServiceClient]] = None,
        broker: Optional[CameraBroker] = None
    ):
        self._client_factory = client_factory or ExamServiceClient
        self._client: Optional[ExamServiceClient] = None
        self.broker = broker or CameraBroker()
        self.gates: Dict[str, PreFlightGate] = {}
        self.controllers: Dict[str, SessionController] = {}

    @property
    def client(self) -> ExamServiceClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    # Pre-flight

    async def open_gate(self, exam_id: str, platform: Optional[PlatformReport] = None) -> PreFlightGate:
        """Start (or restart) pre-flight for an exam"""
        running = self.controllers.get(exam_id)
        if running is not None and running.status in (SessionStatus.IN_PROGRESS, SessionStatus.SUBMITTING):
            raise SessionStateError("An exam session is already running for this exam")

        previous = self.gates.pop(exam_id, None)
        if previous is not None:
            await previous.release_camera()

        gate = PreFlightGate(exam_id, self.client, self.broker, platform=platform)
        await gate.load()
        self.gates[exam_id] = gate
        logger.info(f"Pre-flight opened for exam {exam_id}")
        return gate

    def get_gate(self, exam_id: str) -> Optional[PreFlightGate]:
        return self.gates.get(exam_id)

    # Sessions

    async def start_session(self, exam_id: str) -> SessionController:
        gate = self.gates.get(exam_id)
        if gate is None:
            raise ReadinessError("Pre-flight checks have not been started for this exam")

        token = gate.hand_off()
        controller = SessionController(exam_id, self.client, self.broker)
        try:
            await controller.start(token)
        except ExamServiceError:
            # The token is spent; the student goes through pre-flight again
            self.gates.pop(exam_id, None)
            await gate.release_camera()
            raise

        self.gates.pop(exam_id, None)
        previous = self.controllers.get(exam_id)
        if previous is not None:
            await previous.close()
        self.controllers[exam_id] = controller
        return controller

    def get_controller(self, exam_id: str) -> Optional[SessionController]:
        return self.controllers.get(exam_id)

    async def end_session(self, exam_id: str) -> Optional[SessionController]:
        controller = self.controllers.pop(exam_id, None)
        if controller is not None:
            await controller.close()
        return controller

    async def shutdown(self) -> None:
        for exam_id in list(self.controllers):
            await self.end_session(exam_id)
        for gate in list(self.gates.values()):
            await gate.release_camera()
        self.gates.clear()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Session manager shut down")


# Global singleton instance
session_manager = SessionManager()
