import wave
from pathlib import Path
from typing import List, Optional

import pytest

from call_intake.directory import CallDirectory
from call_intake.notifier import Notification, Notifier
from call_intake.providers import CandidateTask


def write_wav(path: Path, seconds: float, rate: int = 8000) -> Path:
    """Write a silent mono 16-bit WAV file of the given length."""
    with wave.open(str(path), 'wb') as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b'\x00\x00' * int(rate * seconds))
    return path


class RecordingNotifier(Notifier):
    def __init__(self):
        self.notifications: List[Notification] = []

    async def publish(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def channels(self) -> List[str]:
        return [n.channel for n in self.notifications]


class FailingNotifier(Notifier):
    async def publish(self, notification: Notification) -> None:
        raise RuntimeError("presentation layer is gone")


class RecordingDispatcher:
    def __init__(self):
        self.jobs = []

    async def submit(self, job) -> None:
        self.jobs.append(job)


class FakeProvider:
    """Stands in for both the transcription and the extraction provider."""

    def __init__(
        self,
        transcript: Optional[str] = "Please file the VAT return by Friday.",
        tasks: Optional[List[CandidateTask]] = None,
        transcribe_error: Optional[Exception] = None,
        extract_error: Optional[Exception] = None,
    ):
        self.transcript = transcript
        self.tasks = tasks or []
        self.transcribe_error = transcribe_error
        self.extract_error = extract_error
        self.transcribe_calls = []
        self.extract_calls = []

    async def transcribe(self, audio: bytes, file_name: str) -> str:
        self.transcribe_calls.append((len(audio), file_name))
        if self.transcribe_error:
            raise self.transcribe_error
        return self.transcript

    async def extract_tasks(self, transcript: str, client_name: Optional[str] = None):
        self.extract_calls.append((transcript, client_name))
        if self.extract_error:
            raise self.extract_error
        return list(self.tasks)


def make_task(title: str = "File VAT return", task_id: int = 1) -> CandidateTask:
    return CandidateTask(
        id=task_id,
        title=title,
        start_date="2025-09-15",
        due_date="2025-09-22",
        category="tax filing",
    )


@pytest.fixture
async def directory():
    directory = CallDirectory.from_url("sqlite+aiosqlite://")
    await directory.create_schema()
    yield directory
    await directory.close()


@pytest.fixture
async def seeded_directory(directory):
    await directory.add_staff(name="Kim Minji", email="minji@example.com", tp_code="0400")
    await directory.add_staff(name="Lee Junho", email="junho@example.com", tp_code="0500")
    await directory.add_client(company_name="Hanbit Trading", tp_code="400", contact_number="02-555-1234")
    await directory.add_client(company_name="Seoul Bakery", tp_code="401", contact_number="010-5291-3391")
    return directory


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
