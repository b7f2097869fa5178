"""
Proctoring Logger - Logs session lifecycle and integrity events
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger("exam_proctor.events")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level.upper())


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event as a single structured line.

    Args:
        session_id: Exam session (result) ID
        event_type: Type of event (session_start, violation, submit, ...)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, exam_id: str, proctored: bool, duration_seconds: int):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "exam_id": exam_id,
            "proctored": proctored,
            "duration_seconds": duration_seconds
        }
    )


def log_session_end(session_id: str, status: str, reason: Optional[str], violations: int):
    """Log the terminal transition of a session"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "status": status,
            "reason": reason or "none",
            "violations": violations
        }
    )


def log_violation(session_id: str, violation_type: str, severity: str, count: int, limit: int):
    """Log a detected integrity violation"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={
            "type": violation_type,
            "severity": severity,
            "count": count,
            "limit": limit
        },
        level="warning"
    )
