from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

from exam_proctor.models.session import (
    GateStage, McqQuestion, PlatformSignal, Question, SessionOutcome, SessionStatus,
    Severity, SubmitReason, ViolationEvent, ViolationType
)


# ----------------------------------------------------------------------------
# Pre-flight
# ----------------------------------------------------------------------------

class PreflightOpen(BaseModel):
    user_agent: str = ""
    fullscreen_enabled: bool = False
    notifications_supported: bool = False


class RulesAcknowledgement(BaseModel):
    acknowledged: bool = True


class PreflightRead(BaseModel):
    exam_id: str
    title: str
    stage: GateStage
    instructions: List[str]
    is_proctored: bool
    camera_required: bool
    identity_required: bool
    checks: Dict[str, bool]
    required_checks: List[str]
    failed_checks: List[str]
    camera_failure: Optional[str] = None
    identity_captured: bool = False
    identity_confirmed: bool = False
    rules_acknowledged: bool = False
    ready: bool = False
    handed_off: bool = False


class IdentityPhotoRead(BaseModel):
    snapshot: str  # JPEG data URL


# ----------------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------------

class AnswerSubmit(BaseModel):
    question_id: str
    selected_option: str


class NavigationRequest(BaseModel):
    action: Literal["next", "previous", "jump"]
    index: Optional[int] = None


class SignalSubmit(BaseModel):
    signal: PlatformSignal


class SignalResult(BaseModel):
    prevent_default: bool


class FlagResult(BaseModel):
    question_id: str
    flagged: bool


class OptionRead(BaseModel):
    id: str
    text: str


class QuestionRead(BaseModel):
    id: str
    question_type: str
    question_text: str
    marks: float
    options: List[OptionRead]

    @classmethod
    def from_question(cls, question: Question) -> "QuestionRead":
        if isinstance(question, McqQuestion):
            options = [OptionRead(id=option.id, text=option.option_text) for option in question.options]
        else:
            options = [OptionRead(id="true", text="True"), OptionRead(id="false", text="False")]
        return cls(
            id=question.id,
            question_type=question.question_type,
            question_text=question.question_text,
            marks=question.marks,
            options=options,
        )


class TimerRead(BaseModel):
    remaining_seconds: int
    display: str
    urgency: str
    expired: bool


class ViolationRead(BaseModel):
    type: ViolationType
    description: str
    severity: Severity
    timestamp: datetime
    has_evidence: bool

    @classmethod
    def from_event(cls, event: ViolationEvent) -> "ViolationRead":
        return cls(
            type=event.type,
            description=event.description,
            severity=event.severity,
            timestamp=event.timestamp,
            has_evidence=event.evidence is not None,
        )


class WarningRead(BaseModel):
    message: str
    remaining: Optional[int] = None
    expires_at: datetime


class SessionRead(BaseModel):
    exam_id: str
    status: SessionStatus
    session_id: Optional[str] = None
    title: Optional[str] = None
    proctored: bool = False
    timer: Optional[TimerRead] = None
    current_index: int = 0
    question_count: int = 0
    current_question: Optional[QuestionRead] = None
    answers: Dict[str, str] = {}
    flagged: List[str] = []
    answered_count: int = 0
    flagged_count: int = 0
    unanswered_count: int = 0
    violation_count: int = 0
    tab_switch_limit: Optional[int] = None
    violations: List[ViolationRead] = []
    warning: Optional[WarningRead] = None
    notice: Optional[str] = None
    camera_status: Optional[str] = None
    submit_reason: Optional[SubmitReason] = None
    submit_error: Optional[str] = None
    outcome: Optional[SessionOutcome] = None
