from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for payloads exchanged with the Exam Service (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ViolationType(str, Enum):
    TAB_SWITCH = "tab_switch"
    RIGHT_CLICK = "right_click"
    COPY_PASTE = "copy_paste"
    CAMERA_BLOCKED = "camera_blocked"
    CAMERA_UNAVAILABLE = "camera_unavailable"
    FACE_NOT_DETECTED = "face_not_detected"


class PlatformSignal(str, Enum):
    """Integrity-relevant signals raised by the exam page"""
    VISIBILITY_HIDDEN = "visibility_hidden"
    VISIBILITY_VISIBLE = "visibility_visible"
    CONTEXT_MENU = "context_menu"
    COPY = "copy"


class SessionStatus(str, Enum):
    GATING = "gating"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    TERMINATED = "terminated"


class SubmitReason(str, Enum):
    MANUAL = "manual"
    TIMER_EXPIRED = "timer_expired"
    VIOLATION_LIMIT = "violation_limit"


class GateStage(str, Enum):
    INSTRUCTIONS = "instructions"
    SYSTEM_CHECK = "system_check"
    IDENTITY_VERIFICATION = "identity_verification"
    READY = "ready"


# ----------------------------------------------------------------------------
# Exam catalogue (read-only, served by the Exam Service)
# ----------------------------------------------------------------------------

class ProctoringSettings(WireModel):
    video_monitoring: bool = False
    browser_lockdown: bool = True
    identity_verification: bool = False
    tab_switch_limit: Optional[int] = None

    @field_validator("tab_switch_limit", mode="after")
    @classmethod
    def _unset_non_positive_limit(cls, value: Optional[int]) -> Optional[int]:
        # 0 or below falls back to the configured default limit
        return value if value is not None and value > 0 else None


class Exam(WireModel):
    id: str = Field(alias="_id")
    title: str = ""
    description: Optional[str] = None
    instructions: Optional[str] = None
    duration: int = 60  # minutes
    is_proctored: bool = False
    proctoring_settings: ProctoringSettings = Field(default_factory=ProctoringSettings)

    @field_validator("proctoring_settings", mode="before")
    @classmethod
    def _default_settings(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def camera_required(self) -> bool:
        return self.is_proctored and self.proctoring_settings.video_monitoring

    @property
    def identity_required(self) -> bool:
        return self.is_proctored and self.proctoring_settings.identity_verification


class Option(WireModel):
    id: str = Field(alias="_id")
    option_text: str = ""


class McqQuestion(WireModel):
    id: str = Field(alias="_id")
    question_type: Literal["mcq"]
    question_text: str = ""
    marks: float = 1
    options: List[Option] = Field(default_factory=list)

    def accepts(self, option_id: str) -> bool:
        return any(option.id == option_id for option in self.options)


class TrueFalseQuestion(WireModel):
    id: str = Field(alias="_id")
    question_type: Literal["true_false"]
    question_text: str = ""
    marks: float = 1

    def accepts(self, option_id: str) -> bool:
        return option_id in ("true", "false")


Question = Annotated[Union[McqQuestion, TrueFalseQuestion], Field(discriminator="question_type")]


class StartedExam(WireModel):
    """Response of POST /exams/{examId}/start"""
    exam: Exam
    questions: List[Question] = Field(default_factory=list)
    result_id: str
    duration_seconds: Optional[int] = None
    student_id: Optional[str] = None

    @property
    def effective_duration_seconds(self) -> int:
        if self.duration_seconds is not None:
            return self.duration_seconds
        return self.exam.duration * 60


class PlatformReport(WireModel):
    """Capabilities reported by the exam page before system checks run"""
    user_agent: str = ""
    fullscreen_enabled: bool = False
    notifications_supported: bool = False


# ----------------------------------------------------------------------------
# Session engine values
# ----------------------------------------------------------------------------

class ReadinessToken(BaseModel):
    """Proof that pre-flight gating completed. Immutable once issued."""
    model_config = ConfigDict(frozen=True)

    token_id: str = Field(default_factory=lambda: uuid4().hex)
    exam_id: str
    system_checks: Dict[str, bool]
    identity_snapshot: Optional[str] = None  # JPEG data URL
    acknowledged_rules: bool
    issued_at: datetime = Field(default_factory=utcnow)


class ViolationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ViolationType
    description: str
    severity: Severity
    timestamp: datetime = Field(default_factory=utcnow)
    evidence: Optional[str] = None  # JPEG data URL


class AnswerEntry(WireModel):
    question_id: str
    selected_option: str


class SubmissionResult(WireModel):
    """Response of POST /exams/submit/{resultId}"""
    model_config = ConfigDict(extra="allow")

    result: Dict[str, Any] = Field(default_factory=dict)


class ProctoringLogEntry(WireModel):
    """Payload of POST /proctoring/log"""
    exam_id: str
    result_id: Optional[str] = None
    event_type: str
    description: str = ""
    severity: Optional[Severity] = None
    screenshot: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExamSession(BaseModel):
    """Live state of one attempt, owned exclusively by the SessionController"""
    session_id: str  # server-issued resultId
    exam_id: str
    student_id: Optional[str] = None
    exam: Exam
    questions: List[Question] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.GATING
    started_at: datetime = Field(default_factory=utcnow)
    deadline_at: datetime
    answers: Dict[str, str] = Field(default_factory=dict)
    flagged: Set[str] = Field(default_factory=set)
    violation_count: int = 0
    violation_log: List[ViolationEvent] = Field(default_factory=list)
    submit_reason: Optional[SubmitReason] = None
    submit_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.SUBMITTED, SessionStatus.TERMINATED)

    @property
    def proctored(self) -> bool:
        return self.exam.is_proctored


class SessionOutcome(BaseModel):
    """What remains of a session after its terminal transition is confirmed"""
    session_id: str
    exam_id: str
    status: SessionStatus
    submit_reason: Optional[SubmitReason] = None
    violation_count: int = 0
    answered: int = 0
    result: Optional[Dict[str, Any]] = None
    ended_at: datetime = Field(default_factory=utcnow)
