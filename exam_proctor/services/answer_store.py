import logging
from typing import Awaitable, Callable, List, Optional

from exam_proctor.models.session import (
    AnswerEntry, ExamSession, McqQuestion, Question, TrueFalseQuestion
)
from exam_proctor.utils.exceptions import ExamServiceError, InvalidAnswerError
from exam_proctor.utils.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

PersistAnswer = Callable[[str, str], Awaitable[None]]


def validate_option(question: Question, option_id: str) -> None:
    if isinstance(question, McqQuestion):
        if not question.accepts(option_id):
            raise InvalidAnswerError(f"Option {option_id} is not an option of question {question.id}")
    elif isinstance(question, TrueFalseQuestion):
        if not question.accepts(option_id):
            raise InvalidAnswerError(f"Answer to true/false question {question.id} must be 'true' or 'false'")
    else:
        raise InvalidAnswerError(f"Unsupported question type for {question.id}")


class AnswerStore:
    """
    Current answers of the active session with write-through persistence.

    Writes land in the session synchronously; the save call to the Exam Service
    runs in the background and a failure is only logged. The next change to
    the same question implicitly retries it, and the final submission carries
    the full answer set anyway.
    """

    def __init__(self, session: ExamSession, persist: PersistAnswer, tasks: BackgroundTasks):
        self._session = session
        self._persist = persist
        self._tasks = tasks
        self._questions = {question.id: question for question in session.questions}
        self._order = [question.id for question in session.questions]
        self.current_index = 0

    def _question(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise InvalidAnswerError(f"Unknown question {question_id}")
        return question

    def record_answer(self, question_id: str, option_id: str) -> None:
        validate_option(self._question(question_id), option_id)
        self._session.answers[question_id] = option_id
        self._tasks.spawn(self._save(question_id, option_id), label=f"answer:{question_id}")

    async def _save(self, question_id: str, option_id: str) -> None:
        try:
            await self._persist(question_id, option_id)
        except ExamServiceError as e:
            logger.error(f"Failed to save answer for question {question_id}: {e}")

    def answer_for(self, question_id: str) -> Optional[str]:
        return self._session.answers.get(question_id)

    def snapshot(self) -> List[AnswerEntry]:
        """Answered questions only, in exam order"""
        answers = self._session.answers
        return [
            AnswerEntry(question_id=question_id, selected_option=answers[question_id])
            for question_id in self._order
            if question_id in answers
        ]

    # Navigation and review flags are local bookkeeping only

    @property
    def question_count(self) -> int:
        return len(self._order)

    @property
    def current_question(self) -> Optional[Question]:
        if not self._order:
            return None
        return self._questions[self._order[self.current_index]]

    def next(self) -> int:
        self.current_index = min(max(self.question_count - 1, 0), self.current_index + 1)
        return self.current_index

    def previous(self) -> int:
        self.current_index = max(0, self.current_index - 1)
        return self.current_index

    def jump(self, index: int) -> int:
        if not 0 <= index < self.question_count:
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index
        return self.current_index

    def toggle_flag(self, question_id: str) -> bool:
        self._question(question_id)
        flagged = self._session.flagged
        if question_id in flagged:
            flagged.discard(question_id)
            return False
        flagged.add(question_id)
        return True

    @property
    def answered_count(self) -> int:
        return len(self._session.answers)

    @property
    def flagged_count(self) -> int:
        return len(self._session.flagged)

    @property
    def unanswered_count(self) -> int:
        return self.question_count - self.answered_count
