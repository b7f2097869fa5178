from fastapi import Depends, HTTPException, status

from exam_proctor.services.preflight import PreFlightGate
from exam_proctor.services.session_controller import SessionController
from exam_proctor.services.session_manager import SessionManager, session_manager
from exam_proctor.utils.exceptions import AppError, ExamServiceError, SubmissionError


def get_session_manager() -> SessionManager:
    return session_manager


def get_gate(
    exam_id: str,
    manager: SessionManager = Depends(get_session_manager)
) -> PreFlightGate:
    """Pre-flight gate opened for this exam"""
    gate = manager.get_gate(exam_id)
    if gate is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pre-flight has not been opened for this exam"
        )
    return gate


def get_controller(
    exam_id: str,
    manager: SessionManager = Depends(get_session_manager)
) -> SessionController:
    """Session controller running this exam"""
    controller = manager.get_controller(exam_id)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No exam session found for this exam"
        )
    return controller


def to_http_exception(error: AppError) -> HTTPException:
    """Translate an engine error into the response the exam page expects"""
    if isinstance(error, ExamServiceError) and error.upstream_status == status.HTTP_404_NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")
    if isinstance(error, SubmissionError):
        return HTTPException(
            status_code=error.status_code,
            detail=f"{error.message}. Please try submitting again."
        )
    return HTTPException(status_code=error.status_code, detail=error.message)
