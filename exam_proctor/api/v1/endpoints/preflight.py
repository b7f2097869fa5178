"""
Pre-flight Endpoints - drive the readiness wizard from the exam page
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from exam_proctor.dependencies import get_gate, get_session_manager, to_http_exception
from exam_proctor.models.session import GateStage, PlatformReport
from exam_proctor.schemas.session import (
    IdentityPhotoRead, PreflightOpen, PreflightRead, RulesAcknowledgement
)
from exam_proctor.services.preflight import PreFlightGate
from exam_proctor.services.session_manager import SessionManager
from exam_proctor.utils.exceptions import AppError

logger = logging.getLogger(__name__)
router = APIRouter()


def build_preflight_view(gate: PreFlightGate) -> PreflightRead:
    exam = gate.exam
    return PreflightRead(
        exam_id=gate.exam_id,
        title=exam.title,
        stage=gate.stage,
        instructions=gate.instructions,
        is_proctored=exam.is_proctored,
        camera_required=exam.camera_required,
        identity_required=exam.identity_required,
        checks=dict(gate.checks),
        required_checks=gate.required_checks,
        failed_checks=gate.failed_checks(),
        camera_failure=gate.camera_failure,
        identity_captured=gate.pending_identity is not None,
        identity_confirmed=gate.identity_snapshot is not None,
        rules_acknowledged=gate.rules_acknowledged,
        ready=gate.stage == GateStage.READY,
        handed_off=gate.handed_off,
    )


@router.post("/{exam_id}", response_model=PreflightRead, status_code=status.HTTP_201_CREATED)
async def open_preflight(
    exam_id: str,
    report: PreflightOpen,
    manager: SessionManager = Depends(get_session_manager)
):
    """Load the exam and start pre-flight with the page's platform report"""
    try:
        platform = PlatformReport(**report.model_dump())
        gate = await manager.open_gate(exam_id, platform)
        return build_preflight_view(gate)
    except HTTPException:
        raise
    except AppError as e:
        logger.warning(f"Could not open pre-flight for exam {exam_id}: {e}")
        raise to_http_exception(e)


@router.get("/{exam_id}", response_model=PreflightRead)
async def get_preflight(gate: PreFlightGate = Depends(get_gate)):
    return build_preflight_view(gate)


@router.post("/{exam_id}/advance", response_model=PreflightRead)
async def advance_preflight(gate: PreFlightGate = Depends(get_gate)):
    """Move forward one step; a refused step answers 409 with the reason"""
    try:
        await gate.advance()
        return build_preflight_view(gate)
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/back", response_model=PreflightRead)
async def back_preflight(gate: PreFlightGate = Depends(get_gate)):
    try:
        gate.back()
        return build_preflight_view(gate)
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/identity/capture", response_model=IdentityPhotoRead)
async def capture_identity(gate: PreFlightGate = Depends(get_gate)):
    """Take the identity photo from the live camera"""
    try:
        snapshot = await gate.capture_identity()
        return IdentityPhotoRead(snapshot=snapshot)
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/identity/confirm", response_model=PreflightRead)
async def confirm_identity(gate: PreFlightGate = Depends(get_gate)):
    try:
        gate.confirm_identity()
        return build_preflight_view(gate)
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/identity/retake", response_model=PreflightRead)
async def retake_identity(gate: PreFlightGate = Depends(get_gate)):
    try:
        gate.retake_identity()
        return build_preflight_view(gate)
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/acknowledge", response_model=PreflightRead)
async def acknowledge_rules(
    body: RulesAcknowledgement,
    gate: PreFlightGate = Depends(get_gate)
):
    gate.acknowledge_rules(body.acknowledged)
    return build_preflight_view(gate)
