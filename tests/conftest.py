"""
Pytest configuration and fixtures for exam proctor tests
"""

import threading
import time
import pytest
from unittest.mock import AsyncMock
from datetime import datetime, timedelta, timezone
import numpy as np

from exam_proctor.config import Settings
from exam_proctor.core.camera import CameraBroker
from exam_proctor.core.exam_client import ExamServiceClient
from exam_proctor.models.session import Exam, ReadinessToken, StartedExam, SubmissionResult


class FakeCaptureDevice:
    """In-memory webcam producing a left-to-right gradient frame"""

    def __init__(self, open_error=None, read_error=None):
        self.open_error = open_error
        self.read_error = read_error
        self.is_open = False
        self.open_calls = 0
        self.release_calls = 0

    def open(self):
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    def read(self):
        if self.read_error is not None:
            raise self.read_error
        row = np.linspace(0, 255, 320, dtype=np.uint8)
        frame = np.repeat(row[np.newaxis, :], 240, axis=0)
        return np.stack([frame, frame, frame], axis=2)

    def release(self):
        self.is_open = False
        self.release_calls += 1


class SlowCaptureDevice(FakeCaptureDevice):
    """Fake webcam whose reads block a worker thread and record overlapping access"""

    def __init__(self, delay=0.05):
        super().__init__()
        self.delay = delay
        self.active_reads = 0
        self.max_concurrent_reads = 0
        self.release_during_read = False
        self._guard = threading.Lock()

    def read(self):
        with self._guard:
            self.active_reads += 1
            self.max_concurrent_reads = max(self.max_concurrent_reads, self.active_reads)
        try:
            time.sleep(self.delay)
            return super().read()
        finally:
            with self._guard:
                self.active_reads -= 1

    def release(self):
        with self._guard:
            if self.active_reads:
                self.release_during_read = True
        super().release()


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 20, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


MOCK_QUESTIONS = [
    {
        "_id": "q1",
        "questionType": "mcq",
        "questionText": "What is 2 + 2?",
        "marks": 1,
        "options": [
            {"_id": "o1", "optionText": "3"},
            {"_id": "o2", "optionText": "4"},
        ],
    },
    {
        "_id": "q2",
        "questionType": "true_false",
        "questionText": "Python is dynamically typed.",
        "marks": 1,
    },
    {
        "_id": "q3",
        "questionType": "mcq",
        "questionText": "Which keyword defines a function?",
        "marks": 2,
        "options": [
            {"_id": "o3", "optionText": "def"},
            {"_id": "o4", "optionText": "func"},
        ],
    },
]


def build_exam_payload(proctored=True, video=True, identity=True, tab_switch_limit=3, duration=30):
    return {
        "_id": "exam-1",
        "title": "Python Midterm",
        "description": "Covers modules 1 to 4",
        "duration": duration,
        "isProctored": proctored,
        "proctoringSettings": {
            "videoMonitoring": video,
            "identityVerification": identity,
            "browserLockdown": True,
            "tabSwitchLimit": tab_switch_limit,
        },
    }


def build_exam_client(exam_payload, duration_seconds=1800):
    client = AsyncMock(spec=ExamServiceClient)
    client.get_exam.return_value = Exam.model_validate(exam_payload)
    client.start_exam.return_value = StartedExam.model_validate({
        "exam": exam_payload,
        "questions": MOCK_QUESTIONS,
        "resultId": "result-1",
        "durationSeconds": duration_seconds,
        "studentId": "student-1",
    })
    client.save_answer.return_value = None
    client.log_event.return_value = None
    client.submit_exam.return_value = SubmissionResult.model_validate(
        {"result": {"score": 3, "totalMarks": 4, "percentage": 75}}
    )
    return client


@pytest.fixture
def fake_clock():
    """Controllable clock for deadline arithmetic"""
    return FakeClock()


@pytest.fixture
def make_capture_device():
    """Factory for fake devices that fail on open or read"""
    return FakeCaptureDevice


@pytest.fixture
def camera_device():
    return FakeCaptureDevice()


@pytest.fixture
def slow_camera_device():
    return SlowCaptureDevice()


@pytest.fixture
def camera_broker(camera_device):
    """Broker handing out the fake device"""
    return CameraBroker(lambda: camera_device)


@pytest.fixture
def mock_questions():
    return [dict(question) for question in MOCK_QUESTIONS]


@pytest.fixture
def make_exam_payload():
    """Factory for Exam Service exam documents"""
    return build_exam_payload


@pytest.fixture
def make_exam_client():
    """Factory for a mocked Exam Service client serving one exam"""
    return build_exam_client


@pytest.fixture
def exam_payload():
    """Proctored exam with video monitoring and identity verification"""
    return build_exam_payload()


@pytest.fixture
def mock_exam_client(exam_payload):
    return build_exam_client(exam_payload)


@pytest.fixture
def test_settings():
    """Settings with a timer loop and snapshot schedule slow enough to drive by hand"""
    return Settings(
        TIMER_TICK_SECONDS=3600,
        PROCTORING_SNAPSHOT_INTERVAL=3600,
        VIOLATION_WARNING_SECONDS=3,
    )


@pytest.fixture
def readiness_token():
    return ReadinessToken(
        exam_id="exam-1",
        system_checks={"browser": True, "camera": True, "fullscreen": True, "notifications": True},
        identity_snapshot="data:image/jpeg;base64,AAAA",
        acknowledged_rules=True,
    )
