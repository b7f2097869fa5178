"""
Session Endpoints - answers, navigation, platform signals and submission for a
running exam
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from exam_proctor.dependencies import get_controller, get_session_manager, to_http_exception
from exam_proctor.models.session import SessionStatus
from exam_proctor.schemas.session import (
    AnswerSubmit, FlagResult, NavigationRequest, SessionRead, SignalResult, SignalSubmit
)
from exam_proctor.services.session_controller import SessionController
from exam_proctor.services.session_manager import SessionManager
from exam_proctor.utils.exceptions import AppError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{exam_id}", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def start_session(
    exam_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """Hand off the readiness token and open the exam session"""
    try:
        controller = await manager.start_session(exam_id)
        return controller.view()
    except HTTPException:
        raise
    except AppError as e:
        logger.warning(f"Could not start session for exam {exam_id}: {e}")
        raise to_http_exception(e)


@router.get("/{exam_id}", response_model=SessionRead)
async def get_session(controller: SessionController = Depends(get_controller)):
    return controller.view()


@router.post("/{exam_id}/answers", response_model=SessionRead)
async def record_answer(
    answer: AnswerSubmit,
    controller: SessionController = Depends(get_controller)
):
    """Record an answer; it is saved to the Exam Service in the background"""
    try:
        accepted = controller.record_answer(answer.question_id, answer.selected_option)
    except AppError as e:
        raise to_http_exception(e)

    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Exam is no longer accepting answers"
        )
    return controller.view()


@router.post("/{exam_id}/navigation", response_model=SessionRead)
async def navigate(
    request: NavigationRequest,
    controller: SessionController = Depends(get_controller)
):
    try:
        controller.navigate(request.action, request.index)
        return controller.view()
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except AppError as e:
        raise to_http_exception(e)


@router.post("/{exam_id}/flags/{question_id}", response_model=FlagResult)
async def toggle_flag(
    question_id: str,
    controller: SessionController = Depends(get_controller)
):
    """Flag a question for review, or clear its flag"""
    try:
        flagged = controller.toggle_flag(question_id)
    except AppError as e:
        raise to_http_exception(e)

    if flagged is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Exam is no longer accepting changes"
        )
    return FlagResult(question_id=question_id, flagged=flagged)


@router.post("/{exam_id}/signals", response_model=SignalResult)
async def dispatch_signal(
    body: SignalSubmit,
    controller: SessionController = Depends(get_controller)
):
    """Forward a page signal; the page must block the default action when told to"""
    return SignalResult(prevent_default=controller.dispatch(body.signal))


@router.post("/{exam_id}/submit", response_model=SessionRead)
async def submit_session(controller: SessionController = Depends(get_controller)):
    """Submit the exam, or retry a submission that failed"""
    try:
        if controller.status == SessionStatus.SUBMITTING and not controller.submit_in_flight:
            await controller.retry_submit()
        else:
            await controller.submit()
        return controller.view()
    except AppError as e:
        logger.error(f"Submission failed for exam {controller.exam_id}: {e}")
        raise to_http_exception(e)


@router.delete("/{exam_id}", response_model=SessionRead)
async def end_session(
    exam_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """Tear the session down; an unsubmitted attempt ends as terminated"""
    controller = await manager.end_session(exam_id)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No exam session found for this exam"
        )
    return controller.view()
