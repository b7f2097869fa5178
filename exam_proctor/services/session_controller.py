"""
Session Controller - owns one exam attempt from hand-off to its single
terminal transition
"""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from exam_proctor.config import Settings, settings as default_settings
from exam_proctor.core.camera import CameraBroker
from exam_proctor.core.exam_client import ExamServiceClient
from exam_proctor.core.signals import SignalHub
from exam_proctor.models.session import (
    AnswerEntry, ExamSession, PlatformSignal, ProctoringLogEntry, ReadinessToken,
    SessionOutcome, SessionStatus, Severity, SubmissionResult, SubmitReason,
    ViolationEvent, utcnow
)
from exam_proctor.services.answer_store import AnswerStore
from exam_proctor.services.camera_monitor import CameraMonitor
from exam_proctor.services.integrity_monitor import IntegrityMonitor
from exam_proctor.services.timer import SessionTimer
from exam_proctor.schemas.session import (
    QuestionRead, SessionRead, TimerRead, ViolationRead, WarningRead
)
from exam_proctor.utils.exceptions import (
    ExamServiceError, ReadinessError, SessionStateError, SubmissionError
)
from exam_proctor.utils.logging import log_session_end, log_session_start, log_violation
from exam_proctor.utils.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

VIOLATION_LIMIT_NOTICE = "Maximum tab switches reached. Exam will be submitted."
TIME_UP_NOTICE = "Time is up. Your exam is being submitted."
SUBMIT_FAILED_MESSAGE = "Failed to submit exam"


class EventKind(str, Enum):
    SIGNAL = "signal"
    EXPIRED = "expired"
    VIOLATION = "violation"


class SessionEvent(BaseModel):
    kind: EventKind
    signal: Optional[PlatformSignal] = None
    violation: Optional[ViolationEvent] = None


class IntegrityWarning(BaseModel):
    """Transient warning shown to the student; auto-dismissed"""
    message: str
    remaining: Optional[int] = None
    expires_at: datetime


class SessionController:
    """
    Orchestrates Timer, Answer Store, Integrity Monitor and Camera Monitor.

    Monitors never mutate the session. They post SessionEvents into a single
    queue that this controller consumes, and the controller applies every
    state change. Manual submit, timer expiry and the violation limit all
    converge on one guarded submit: the first caller claims the guard with a
    check-and-set before any await, later callers are no-ops.
    """

    def __init__(
        self,
        exam_id: str,
        client: ExamServiceClient,
        broker: CameraBroker,
        hub: Optional[SignalHub] = None,
        clock: Callable[[], datetime] = utcnow,
        config: Optional[Settings] = None
    ):
        self.exam_id = exam_id
        self.client = client
        self.broker = broker
        self.hub = hub or SignalHub()
        self.clock = clock
        self.config = config or default_settings

        self.session: Optional[ExamSession] = None
        self.outcome: Optional[SessionOutcome] = None
        self.last_result: Optional[SubmissionResult] = None
        self.answers: Optional[AnswerStore] = None
        self.timer: Optional[SessionTimer] = None
        self.integrity: Optional[IntegrityMonitor] = None
        self.camera: Optional[CameraMonitor] = None
        self.warning: Optional[IntegrityWarning] = None
        self.notice: Optional[str] = None

        self._tasks = BackgroundTasks(f"session:{exam_id}")
        self._events: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._warning_handle: Optional[asyncio.TimerHandle] = None
        self._token_id: Optional[str] = None
        self._submit_claimed = False
        self._closed_before_start = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        if self.session is not None:
            return self.session.status
        if self.outcome is not None:
            return self.outcome.status
        if self._closed_before_start:
            return SessionStatus.TERMINATED
        return SessionStatus.GATING

    @property
    def submit_in_flight(self) -> bool:
        return self._submit_claimed

    # ------------------------------------------------------------------
    # Opening the session
    # ------------------------------------------------------------------

    async def start(self, token: ReadinessToken) -> ExamSession:
        """Consume the readiness token and open the session on the server"""
        if self._token_id is not None or self.status != SessionStatus.GATING:
            raise ReadinessError("Session already started")
        if token.exam_id != self.exam_id:
            raise ReadinessError("Readiness token was issued for a different exam")

        self._token_id = token.token_id
        try:
            started = await self.client.start_exam(self.exam_id)
        except ExamServiceError:
            self._token_id = None
            raise

        now = self.clock()
        exam = started.exam
        session = ExamSession(
            session_id=started.result_id,
            exam_id=self.exam_id,
            student_id=started.student_id,
            exam=exam,
            questions=started.questions,
            status=SessionStatus.IN_PROGRESS,
            started_at=now,
            deadline_at=now + timedelta(seconds=started.effective_duration_seconds),
        )
        self.session = session
        self.answers = AnswerStore(session, self._persist_answer, self._tasks)

        self._events = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume(), name=f"session-events:{session.session_id}")

        self.timer = SessionTimer(
            session.deadline_at,
            on_expire=self._on_timer_expired,
            clock=self.clock,
            tick_seconds=self.config.TIMER_TICK_SECONDS,
        )

        if exam.is_proctored:
            self.integrity = IntegrityMonitor(
                on_signal=self._enqueue_signal,
                tab_switch_limit=exam.proctoring_settings.tab_switch_limit or self.config.DEFAULT_TAB_SWITCH_LIMIT,
            )
            self.integrity.attach(self.hub)
            self._forward("exam_started", "Exam session started")

        if exam.camera_required:
            self.camera = CameraMonitor(
                self.broker,
                on_violation=self._enqueue_violation,
                on_snapshot=self._forward_snapshot,
                interval=self.config.PROCTORING_SNAPSHOT_INTERVAL,
            )

        log_session_start(session.session_id, self.exam_id, exam.is_proctored, started.effective_duration_seconds)

        self.timer.start()
        if self.camera is not None:
            await self.camera.start()

        return session

    # ------------------------------------------------------------------
    # Student actions
    # ------------------------------------------------------------------

    def _accepting_input(self) -> bool:
        return self.session is not None and self.session.status == SessionStatus.IN_PROGRESS

    def record_answer(self, question_id: str, option_id: str) -> bool:
        """Record an answer; returns False (no-op) once the session stopped taking answers"""
        if not self._accepting_input():
            logger.debug(f"Answer for {question_id} ignored in status {self.status.value}")
            return False
        self.answers.record_answer(question_id, option_id)
        return True

    def toggle_flag(self, question_id: str) -> Optional[bool]:
        if not self._accepting_input():
            return None
        return self.answers.toggle_flag(question_id)

    def navigate(self, action: str, index: Optional[int] = None) -> int:
        if self.answers is None or self.session is None:
            raise SessionStateError("Exam session is not running")
        if action == "next":
            return self.answers.next()
        if action == "previous":
            return self.answers.previous()
        if index is None:
            raise SessionStateError("A question index is required to jump")
        return self.answers.jump(index)

    def dispatch(self, signal: PlatformSignal) -> bool:
        """Publish a page signal; returns whether the page must prevent the default action"""
        return self.hub.publish(signal)

    async def _persist_answer(self, question_id: str, option_id: str) -> None:
        await self.client.save_answer(self.session.session_id, question_id, option_id)

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def _enqueue(self, event: SessionEvent) -> None:
        if self._events is None or self.session is None or self.session.is_terminal:
            return
        self._events.put_nowait(event)

    def _enqueue_signal(self, signal: PlatformSignal) -> None:
        self._enqueue(SessionEvent(kind=EventKind.SIGNAL, signal=signal))

    def _enqueue_violation(self, violation: ViolationEvent) -> None:
        self._enqueue(SessionEvent(kind=EventKind.VIOLATION, violation=violation))

    def _on_timer_expired(self) -> None:
        self._enqueue(SessionEvent(kind=EventKind.EXPIRED))

    async def _consume(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._apply(event)
            except Exception as e:
                logger.exception(f"Failed to apply session event {event.kind.value}: {e}")
            finally:
                self._events.task_done()

    async def _apply(self, event: SessionEvent) -> None:
        session = self.session
        if session is None or session.status != SessionStatus.IN_PROGRESS:
            return

        if event.kind == EventKind.EXPIRED:
            self.notice = TIME_UP_NOTICE
            self._begin_submit(SubmitReason.TIMER_EXPIRED)
        elif event.kind == EventKind.SIGNAL:
            await self._apply_signal(event.signal)
        elif event.kind == EventKind.VIOLATION:
            self._append_violation(event.violation)
            self._show_warning(f"Proctoring alert: {event.violation.description}")

    async def _apply_signal(self, signal: PlatformSignal) -> None:
        session = self.session
        if self.integrity is None:
            return
        assessment = self.integrity.assess(signal, session.violation_count)
        if assessment is None:
            return

        if assessment.counts_toward_limit:
            session.violation_count = assessment.violation_count

        violation = assessment.violation
        if self.camera is not None:
            evidence = await self.camera.capture_snapshot()
            if evidence:
                violation = violation.model_copy(update={"evidence": evidence})
        if session.is_terminal:
            return

        self._append_violation(violation)

        if assessment.escalate:
            self.notice = VIOLATION_LIMIT_NOTICE
            self._dismiss_warning()
            self._begin_submit(SubmitReason.VIOLATION_LIMIT)
        elif assessment.warning:
            self._show_warning(assessment.warning, self.integrity.remaining(session.violation_count))

    def _append_violation(self, violation: ViolationEvent) -> None:
        session = self.session
        session.violation_log.append(violation)
        log_violation(
            session.session_id,
            violation.type.value,
            violation.severity.value,
            session.violation_count,
            self.integrity.tab_switch_limit if self.integrity else 0,
        )
        self._forward(
            violation.type.value,
            violation.description,
            severity=violation.severity,
            screenshot=violation.evidence,
            metadata={
                "violationCount": session.violation_count,
                "timestamp": violation.timestamp.isoformat(),
            },
        )

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def _show_warning(self, message: str, remaining: Optional[int] = None) -> None:
        self._dismiss_warning()
        duration = self.config.VIOLATION_WARNING_SECONDS
        self.warning = IntegrityWarning(
            message=message,
            remaining=remaining,
            expires_at=self.clock() + timedelta(seconds=duration),
        )
        loop = asyncio.get_running_loop()
        self._warning_handle = loop.call_later(duration, self._dismiss_warning)

    def _dismiss_warning(self) -> None:
        if self._warning_handle is not None:
            self._warning_handle.cancel()
            self._warning_handle = None
        self.warning = None

    # ------------------------------------------------------------------
    # Proctoring log forwarding (best effort)
    # ------------------------------------------------------------------

    def _forward(
        self,
        event_type: str,
        description: str = "",
        severity: Optional[Severity] = None,
        screenshot: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        entry = ProctoringLogEntry(
            exam_id=self.exam_id,
            result_id=self.session.session_id if self.session else None,
            event_type=event_type,
            description=description,
            severity=severity,
            screenshot=screenshot,
            metadata=metadata or {},
        )
        self._tasks.spawn(self._send_log(entry), label=f"log:{event_type}")

    async def _send_log(self, entry: ProctoringLogEntry) -> None:
        try:
            await self.client.log_event(entry)
        except ExamServiceError as e:
            logger.error(f"Failed to log proctoring event {entry.event_type}: {e}")

    def _forward_snapshot(self, snapshot: str) -> None:
        if self._accepting_input():
            self._forward("snapshot", "Periodic camera snapshot", screenshot=snapshot)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _claim_submit(self, reason: SubmitReason) -> Optional[List[AnswerEntry]]:
        """Check-and-set on the submit guard. Returns the payload for the winner, None otherwise."""
        session = self.session
        if session is None or session.is_terminal or self._submit_claimed:
            return None
        self._submit_claimed = True
        # Page signals are only monitored while the exam is in progress
        if self.integrity is not None:
            self.integrity.detach()

        if session.status == SessionStatus.IN_PROGRESS:
            session.submit_reason = reason
        session.status = SessionStatus.SUBMITTING
        session.submit_error = None
        logger.info(f"Submitting session {session.session_id} ({session.submit_reason.value})")
        return self.answers.snapshot()

    def _begin_submit(self, reason: SubmitReason) -> None:
        payload = self._claim_submit(reason)
        if payload is not None:
            self._tasks.spawn(self._submit_quietly(payload), label="submit")

    async def submit(self, reason: SubmitReason = SubmitReason.MANUAL) -> Optional[SubmissionResult]:
        """
        Submit the current answers.

        Returns None when another trigger already owns the submission or the
        session is over. Raises SubmissionError when the Exam Service rejects
        or cannot be reached; the same call may then be retried.
        """
        payload = self._claim_submit(reason)
        if payload is None:
            logger.debug(f"Submit ({reason.value}) ignored for exam {self.exam_id}")
            return None
        return await self._run_submit(payload)

    async def retry_submit(self) -> Optional[SubmissionResult]:
        reason = self.session.submit_reason if self.session else None
        return await self.submit(reason or SubmitReason.MANUAL)

    async def _submit_quietly(self, payload: List[AnswerEntry]) -> None:
        try:
            await self._run_submit(payload)
        except SubmissionError as e:
            logger.error(f"Automatic submission failed for exam {self.exam_id}: {e}")

    async def _run_submit(self, payload: List[AnswerEntry]) -> SubmissionResult:
        session = self.session
        self._dismiss_warning()
        if self.camera is not None:
            await self.camera.stop()

        try:
            result = await self.client.submit_exam(session.session_id, payload)
        except ExamServiceError as e:
            await self._submit_failed(session, e)
            raise SubmissionError(f"{SUBMIT_FAILED_MESSAGE}: {e}") from e

        if session.proctored and not session.is_terminal:
            self._forward("exam_submitted", "Exam submitted successfully")
        await self._finish(SessionStatus.SUBMITTED, result)
        return result

    async def _submit_failed(self, session: ExamSession, error: ExamServiceError) -> None:
        self._submit_claimed = False
        if session.is_terminal:
            return
        session.submit_error = f"{SUBMIT_FAILED_MESSAGE}: {error}"
        logger.error(f"Submission failed for session {session.session_id}: {error}")

        # Only a manual submit hands the exam back to the student. Expiry and
        # the violation limit keep answers frozen until a retry succeeds.
        if session.submit_reason != SubmitReason.MANUAL:
            return
        if self.timer is not None and self.timer.expired:
            session.submit_reason = SubmitReason.TIMER_EXPIRED
            return

        session.status = SessionStatus.IN_PROGRESS
        if self.integrity is not None:
            self.integrity.attach(self.hub)
        if self.camera is not None:
            await self.camera.start()

    # ------------------------------------------------------------------
    # Terminal transition and teardown
    # ------------------------------------------------------------------

    async def _finish(self, status: SessionStatus, result: Optional[SubmissionResult] = None) -> None:
        session = self.session
        if session is None or session.is_terminal:
            return
        session.status = status
        await self._teardown()

        self.last_result = result
        self.outcome = SessionOutcome(
            session_id=session.session_id,
            exam_id=self.exam_id,
            status=status,
            submit_reason=session.submit_reason,
            violation_count=session.violation_count,
            answered=len(session.answers),
            result=result.result if result else None,
            ended_at=self.clock(),
        )
        log_session_end(
            session.session_id,
            status.value,
            session.submit_reason.value if session.submit_reason else None,
            session.violation_count,
        )
        # Released from memory once the terminal transition is confirmed
        self.session = None

    async def _teardown(self) -> None:
        self._dismiss_warning()
        if self.integrity is not None:
            self.integrity.detach()
        if self.timer is not None:
            await self.timer.stop()
        if self.camera is not None:
            await self.camera.stop()

        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        # Unprocessed events belong to a session that no longer exists
        if self._events is not None:
            while not self._events.empty():
                self._events.get_nowait()
                self._events.task_done()

    async def close(self) -> None:
        """Tear the session down. A session not yet submitted ends as terminated."""
        if self.session is None:
            if self.outcome is None:
                self._closed_before_start = True
            return
        await self._finish(SessionStatus.TERMINATED)
        await self._tasks.cancel_all()

    async def drain(self) -> None:
        """Wait until queued events and background work have settled"""
        while True:
            if self._events is not None and self._consumer is not None:
                await self._events.join()
            await self._tasks.drain()
            queue_idle = self._events is None or self._consumer is None or self._events.empty()
            if queue_idle and not len(self._tasks):
                return

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def view(self) -> SessionRead:
        session = self.session
        if session is None:
            return SessionRead(exam_id=self.exam_id, status=self.status, outcome=self.outcome)

        store = self.answers
        current = store.current_question
        timer = self.timer
        return SessionRead(
            exam_id=self.exam_id,
            status=session.status,
            session_id=session.session_id,
            title=session.exam.title,
            proctored=session.proctored,
            timer=TimerRead(
                remaining_seconds=timer.remaining_seconds(),
                display=timer.format_remaining(),
                urgency=timer.urgency(),
                expired=timer.expired,
            ) if timer is not None else None,
            current_index=store.current_index,
            question_count=store.question_count,
            current_question=QuestionRead.from_question(current) if current is not None else None,
            answers=dict(session.answers),
            flagged=sorted(session.flagged),
            answered_count=store.answered_count,
            flagged_count=store.flagged_count,
            unanswered_count=store.unanswered_count,
            violation_count=session.violation_count,
            tab_switch_limit=self.integrity.tab_switch_limit if self.integrity else None,
            violations=[ViolationRead.from_event(event) for event in session.violation_log],
            warning=WarningRead(**self.warning.model_dump()) if self.warning else None,
            notice=self.notice,
            camera_status=self.camera.status.value if self.camera else None,
            submit_reason=session.submit_reason,
            submit_error=session.submit_error,
        )
