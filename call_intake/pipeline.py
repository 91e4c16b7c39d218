"""
Background transcription pipeline.

For each accepted call:
1. Transcribe the recording (terminal on failure)
2. Store the transcript and notify
3. Extract candidate tasks (best-effort)
4. Store one message authored by the system actor and notify

Runs are fed through a bounded worker pool so a burst of recordings never
fans out into unbounded concurrent API calls.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set

from .directory import CallDirectory
from .notifier import Notifier

logger = logging.getLogger(__name__)

TASKS_FOUND_CONTENT = 'Extracted the following tasks from the call:'
NO_TASKS_CONTENT = 'Analyzed the call but found no tasks to extract.'


class PipelineOutcome(enum.Enum):
    TRANSCRIPTION_FAILED = 'transcription_failed'
    TRANSCRIBED = 'transcribed'
    COMPLETED = 'completed'


@dataclass
class TranscriptionJob:
    call_id: int
    audio_path: str
    file_name: str
    client_name: Optional[str] = None
    attempt: int = 1


class TranscriptionPipeline:
    """
    Turns a persisted call's recording into a transcript and candidate tasks.
    """

    def __init__(self, directory: CallDirectory, transcriber, extractor, notifier: Notifier):
        self.directory = directory
        self.transcriber = transcriber
        self.extractor = extractor
        self.notifier = notifier

    async def process(
        self,
        call_id: int,
        audio_path: str,
        file_name: str,
        client_name: Optional[str] = None,
    ) -> PipelineOutcome:
        logger.info(f"Starting STT processing for call {call_id}: {file_name}")

        transcript = await self._transcribe(call_id, audio_path, file_name)
        if transcript is None:
            return PipelineOutcome.TRANSCRIPTION_FAILED

        try:
            await self.directory.update_call_transcript(call_id, transcript)
        except Exception as e:
            logger.error(f"Failed to save transcript for call {call_id}: {e}", exc_info=True)
            return PipelineOutcome.TRANSCRIPTION_FAILED

        try:
            await self.notifier.transcript_updated(call_id, transcript)
        except Exception as e:
            logger.error(f"Failed to send transcript event for call {call_id}: {e}", exc_info=True)

        try:
            await self._extract_and_store_tasks(call_id, transcript, client_name)
        except Exception as e:
            # The transcript stays stored
            logger.error(f"Task extraction failed for call {call_id}: {e}", exc_info=True)
            return PipelineOutcome.TRANSCRIBED

        return PipelineOutcome.COMPLETED

    async def _transcribe(self, call_id: int, audio_path: str, file_name: str) -> Optional[str]:
        try:
            audio = await asyncio.to_thread(Path(audio_path).read_bytes)
            transcript = await self.transcriber.transcribe(audio, file_name)
        except Exception as e:
            logger.error(f"STT failed for call {call_id}: {e}", exc_info=True)
            return None

        if not transcript or not transcript.strip():
            logger.error(f"STT failed for call {call_id}: Empty transcript")
            return None

        logger.info(f"STT completed for call {call_id}. Length: {len(transcript)} characters")
        return transcript

    async def _extract_and_store_tasks(
        self,
        call_id: int,
        transcript: str,
        client_name: Optional[str],
    ) -> None:
        tasks = await self.extractor.extract_tasks(transcript, client_name)
        candidate_tasks = [task.to_payload() for task in tasks]
        logger.info(f"Task extraction completed for call {call_id}: {len(candidate_tasks)} tasks")

        actor = await self.directory.find_or_create_system_actor()
        message = await self.directory.create_message(
            author_id=actor.staff_id,
            call_id=call_id,
            content=TASKS_FOUND_CONTENT if candidate_tasks else NO_TASKS_CONTENT,
            metadata={'candidate_tasks': candidate_tasks},
        )

        try:
            await self.notifier.tasks_extracted(call_id, message, candidate_tasks)
        except Exception as e:
            logger.error(f"Failed to send tasks event for call {call_id}: {e}", exc_info=True)


class PipelineWorkerPool:
    """
    Fixed number of workers draining a bounded job queue.

    submit() returns as soon as the job is queued; it only waits while the
    queue is full. Failed transcriptions are retried with capped exponential
    backoff when max_attempts > 1.
    """

    def __init__(
        self,
        pipeline: TranscriptionPipeline,
        workers: int = 2,
        queue_size: int = 100,
        max_attempts: int = 1,
        retry_base_seconds: float = 30.0,
        retry_max_seconds: float = 600.0,
    ):
        self.pipeline = pipeline
        self.worker_count = workers
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._workers: Set[asyncio.Task] = set()
        self._retries: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        for index in range(self.worker_count):
            task = asyncio.create_task(self._worker(index), name=f"pipeline-worker-{index}")
            self._workers.add(task)
        logger.info(f"Started {self.worker_count} pipeline workers")

    async def submit(self, job: TranscriptionJob) -> None:
        await self.queue.put(job)
        logger.info(f"Queued STT job for call {job.call_id} (attempt {job.attempt})")

    async def join(self) -> None:
        """Wait until every queued job and pending retry has finished."""
        while True:
            await self.queue.join()
            if not self._retries:
                return
            await asyncio.gather(*list(self._retries), return_exceptions=True)

    async def stop(self) -> None:
        tasks = list(self._workers) + list(self._retries)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._retries.clear()
        logger.info("Pipeline workers stopped")

    def retry_delay(self, attempt: int) -> float:
        return min(self.retry_base_seconds * (2 ** (attempt - 1)), self.retry_max_seconds)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                outcome = await self.pipeline.process(
                    job.call_id, job.audio_path, job.file_name, job.client_name
                )
                if outcome is PipelineOutcome.TRANSCRIPTION_FAILED and job.attempt < self.max_attempts:
                    self._schedule_retry(job)
            except Exception as e:
                logger.error(f"Pipeline worker {index} failed on call {job.call_id}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    def _schedule_retry(self, job: TranscriptionJob) -> None:
        delay = self.retry_delay(job.attempt)
        retry = TranscriptionJob(
            call_id=job.call_id,
            audio_path=job.audio_path,
            file_name=job.file_name,
            client_name=job.client_name,
            attempt=job.attempt + 1,
        )
        logger.info(f"Retrying STT for call {job.call_id} in {delay:.0f}s (attempt {retry.attempt})")

        task = asyncio.create_task(self._delayed_submit(retry, delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _delayed_submit(self, job: TranscriptionJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.submit(job)
