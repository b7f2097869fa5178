import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from exam_proctor.config import settings
from exam_proctor.models.session import (
    AnswerEntry, Exam, ProctoringLogEntry, StartedExam, SubmissionResult
)
from exam_proctor.utils.exceptions import ExamServiceError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ExamServiceClient:
    """Client for the Exam Service REST backend and its proctoring log endpoint"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.EXAM_API_URL).rstrip("/")
        token = settings.EXAM_API_TOKEN if token is None else token

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or settings.EXAM_API_TIMEOUT,
            transport=transport,
        )

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response) or f"Exam Service returned {e.response.status_code}"
            raise ExamServiceError(message, upstream_status=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise ExamServiceError(f"Exam Service unreachable: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ExamServiceError("Malformed Exam Service response") from e

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Malformed Exam Service response for {model.__name__}: {e}")
            raise ExamServiceError("Malformed Exam Service response") from e

    async def get_exam(self, exam_id: str) -> Exam:
        """GET /exams/{examId} - exam metadata consumed by the pre-flight gate"""
        data = await self._request("GET", f"/exams/{exam_id}")
        return self._parse(Exam, data)

    async def start_exam(self, exam_id: str) -> StartedExam:
        """POST /exams/{examId}/start - authoritative session open"""
        data = await self._request("POST", f"/exams/{exam_id}/start")
        return self._parse(StartedExam, data)

    async def save_answer(self, result_id: str, question_id: str, selected_option: str) -> None:
        payload = AnswerEntry(question_id=question_id, selected_option=selected_option)
        await self._request(
            "POST",
            f"/exams/answer/{result_id}",
            json=payload.model_dump(by_alias=True)
        )

    async def submit_exam(self, result_id: str, answers: List[AnswerEntry]) -> SubmissionResult:
        payload = {"answers": [answer.model_dump(by_alias=True) for answer in answers]}
        data = await self._request("POST", f"/exams/submit/{result_id}", json=payload)
        return self._parse(SubmissionResult, data)

    async def log_event(self, entry: ProctoringLogEntry) -> None:
        await self._request(
            "POST",
            "/proctoring/log",
            json=entry.model_dump(by_alias=True, exclude_none=True, mode="json")
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        return str(message) if message else None
    return None
