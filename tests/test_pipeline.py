import asyncio
import json
from datetime import date
from unittest.mock import AsyncMock

import pytest

from call_intake.errors import ExtractionError, TranscriptionError
from call_intake.notifier import TASKS_EXTRACTED, TRANSCRIPT_UPDATED
from call_intake.pipeline import (
    NO_TASKS_CONTENT,
    TASKS_FOUND_CONTENT,
    PipelineOutcome,
    PipelineWorkerPool,
    TranscriptionJob,
    TranscriptionPipeline,
)

from tests.conftest import FailingNotifier, FakeProvider, make_task, write_wav


@pytest.fixture
async def call(directory):
    return await directory.create_call(
        recording_file_name="0400-400_20250915134049_mix.wav",
        call_date=date(2025, 9, 15),
        caller_name="Kim Minji",
        client_name="Hanbit Trading",
        phone_number="",
        call_duration="0:02",
    )


@pytest.fixture
def audio_path(tmp_path):
    return str(write_wav(tmp_path / "0400-400_20250915134049_mix.wav", seconds=2))


async def test_tasks_found(directory, notifier, call, audio_path) -> None:
    provider = FakeProvider(tasks=[make_task("File VAT return"), make_task("Send invoice", 2)])
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav", "Hanbit Trading")

    assert outcome is PipelineOutcome.COMPLETED
    stored = await directory.get_call(call.call_id)
    assert stored.transcript == "Please file the VAT return by Friday."
    assert provider.extract_calls == [("Please file the VAT return by Friday.", "Hanbit Trading")]

    messages = await directory.list_messages(call.call_id)
    assert len(messages) == 1
    assert messages[0].content == TASKS_FOUND_CONTENT
    payload = json.loads(messages[0].payload)
    assert [t["title"] for t in payload["candidate_tasks"]] == ["File VAT return", "Send invoice"]
    assert payload["candidate_tasks"][0]["assignee"] == ""
    assert payload["candidate_tasks"][0]["client_id"] is None

    assert notifier.channels() == [TRANSCRIPT_UPDATED, TASKS_EXTRACTED]
    event = notifier.notifications[1].payload
    assert event["call_id"] == call.call_id
    assert len(event["message"]["candidate_tasks"]) == 2


async def test_zero_tasks_still_creates_one_message(directory, notifier, call, audio_path) -> None:
    provider = FakeProvider(tasks=[])
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav")

    assert outcome is PipelineOutcome.COMPLETED
    messages = await directory.list_messages(call.call_id)
    assert len(messages) == 1
    assert messages[0].content == NO_TASKS_CONTENT
    assert json.loads(messages[0].payload) == {"candidate_tasks": []}
    assert notifier.notifications[-1].payload["message"]["candidate_tasks"] == []


@pytest.mark.parametrize("transcript", ["", "   \n\t "])
async def test_empty_transcript_stores_nothing(directory, notifier, call, audio_path, transcript) -> None:
    provider = FakeProvider(transcript=transcript)
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav")

    assert outcome is PipelineOutcome.TRANSCRIPTION_FAILED
    assert (await directory.get_call(call.call_id)).transcript is None
    assert await directory.list_messages(call.call_id) == []
    assert provider.extract_calls == []
    assert notifier.notifications == []


async def test_provider_failure_is_terminal(directory, notifier, call, audio_path) -> None:
    provider = FakeProvider(transcribe_error=TranscriptionError("api down"))
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav")

    assert outcome is PipelineOutcome.TRANSCRIPTION_FAILED
    assert (await directory.get_call(call.call_id)).transcript is None
    assert await directory.list_messages(call.call_id) == []


async def test_missing_audio_file_is_a_transcription_failure(directory, notifier, call, tmp_path) -> None:
    provider = FakeProvider()
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, str(tmp_path / "gone.wav"), "gone.wav")

    assert outcome is PipelineOutcome.TRANSCRIPTION_FAILED
    assert provider.transcribe_calls == []


async def test_extraction_failure_keeps_transcript(directory, notifier, call, audio_path) -> None:
    provider = FakeProvider(extract_error=ExtractionError("rate limited"))
    pipeline = TranscriptionPipeline(directory, provider, provider, notifier)

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav")

    assert outcome is PipelineOutcome.TRANSCRIBED
    assert (await directory.get_call(call.call_id)).transcript == "Please file the VAT return by Friday."
    assert await directory.list_messages(call.call_id) == []
    assert notifier.channels() == [TRANSCRIPT_UPDATED]


async def test_notifier_failures_do_not_stop_pipeline(directory, call, audio_path) -> None:
    provider = FakeProvider(tasks=[make_task()])
    pipeline = TranscriptionPipeline(directory, provider, provider, FailingNotifier())

    outcome = await pipeline.process(call.call_id, audio_path, "call.wav")

    assert outcome is PipelineOutcome.COMPLETED
    assert len(await directory.list_messages(call.call_id)) == 1


async def test_worker_pool_runs_jobs_in_background(directory, notifier, call, audio_path) -> None:
    provider = FakeProvider()
    pool = PipelineWorkerPool(TranscriptionPipeline(directory, provider, provider, notifier), workers=2)
    pool.start()

    await pool.submit(TranscriptionJob(call.call_id, audio_path, "call.wav"))
    await asyncio.wait_for(pool.join(), timeout=5)
    await pool.stop()

    assert (await directory.get_call(call.call_id)).transcript is not None
    assert not pool.running


async def test_worker_pool_limits_concurrency() -> None:
    active = 0
    peak = 0

    async def process(call_id, audio_path, file_name, client_name=None):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return PipelineOutcome.COMPLETED

    pipeline = AsyncMock()
    pipeline.process.side_effect = process
    pool = PipelineWorkerPool(pipeline, workers=2, queue_size=10)
    pool.start()

    for call_id in range(6):
        await pool.submit(TranscriptionJob(call_id, "a.wav", "a.wav"))
    await asyncio.wait_for(pool.join(), timeout=5)
    await pool.stop()

    assert pipeline.process.await_count == 6
    assert peak == 2


async def test_worker_pool_retries_failed_transcription() -> None:
    pipeline = AsyncMock()
    pipeline.process.side_effect = [
        PipelineOutcome.TRANSCRIPTION_FAILED,
        PipelineOutcome.TRANSCRIPTION_FAILED,
        PipelineOutcome.COMPLETED,
    ]
    pool = PipelineWorkerPool(
        pipeline, workers=1, max_attempts=3, retry_base_seconds=0.01, retry_max_seconds=0.02
    )
    pool.start()

    await pool.submit(TranscriptionJob(7, "a.wav", "a.wav"))
    await asyncio.wait_for(pool.join(), timeout=5)
    await pool.stop()

    assert pipeline.process.await_count == 3


async def test_worker_pool_without_retry_runs_once() -> None:
    pipeline = AsyncMock()
    pipeline.process.return_value = PipelineOutcome.TRANSCRIPTION_FAILED
    pool = PipelineWorkerPool(pipeline, workers=1)
    pool.start()

    await pool.submit(TranscriptionJob(7, "a.wav", "a.wav"))
    await asyncio.wait_for(pool.join(), timeout=5)
    await pool.stop()

    assert pipeline.process.await_count == 1


def test_retry_delay_is_capped() -> None:
    pool = PipelineWorkerPool(AsyncMock(), retry_base_seconds=30, retry_max_seconds=600)

    assert [pool.retry_delay(n) for n in range(1, 7)] == [30, 60, 120, 240, 480, 600]
