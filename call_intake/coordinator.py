"""
Ingestion Coordinator

Turns a detected recording into exactly one call record:
dedup -> parse filename -> resolve staff/client -> read duration -> persist
-> notify -> hand off to the background pipeline (without waiting for it).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .audio import is_audio_file, read_call_duration
from .directory import CallDirectory
from .filename_parser import parse_recording_filename
from .models import Call
from .notifier import Notifier
from .pipeline import TranscriptionJob

logger = logging.getLogger(__name__)

UNIDENTIFIED = 'unidentified'


@dataclass(frozen=True)
class DetectedFile:
    """An audio file found by the watcher (not persisted)."""

    path: str
    file_name: str
    detected_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_path(cls, path) -> "DetectedFile":
        path = Path(path)
        return cls(path=str(path.absolute()), file_name=path.name)


@dataclass(frozen=True)
class RemovedFile:
    """An audio file that disappeared from the watched folder."""

    path: str
    file_name: str

    @classmethod
    def from_path(cls, path) -> "RemovedFile":
        path = Path(path)
        return cls(path=str(path.absolute()), file_name=path.name)


class IngestionCoordinator:
    """
    Creates call records for detected files and dispatches background work.

    The dispatcher only needs an async submit(TranscriptionJob) method; a
    PipelineWorkerPool is used in production.
    """

    def __init__(self, directory: CallDirectory, notifier: Notifier, dispatcher):
        self.directory = directory
        self.notifier = notifier
        self.dispatcher = dispatcher

    async def handle(self, detected: DetectedFile) -> Optional[Call]:
        """
        Ingest one file. Returns the new call, or None if the file was already
        ingested or ingestion failed before the call was persisted.
        """
        logger.info(f"Processing local file: {detected.file_name}")

        try:
            call = await self._create_call(detected)
        except Exception as e:
            logger.error(f"Local file processing failed for {detected.file_name}: {e}", exc_info=True)
            return None

        if call is None:
            return None

        try:
            await self.notifier.call_created(call)
        except Exception as e:
            logger.error(f"Failed to send call created event for call {call.call_id}: {e}", exc_info=True)

        try:
            await self.dispatcher.submit(TranscriptionJob(
                call_id=call.call_id,
                audio_path=detected.path,
                file_name=detected.file_name,
                client_name=call.client_name if call.client_id else None,
            ))
        except Exception as e:
            logger.error(f"Failed to start background STT for call {call.call_id}: {e}", exc_info=True)

        logger.info(f"File processing completed for: {detected.file_name} (call {call.call_id})")
        return call

    async def _create_call(self, detected: DetectedFile) -> Optional[Call]:
        existing = await self.directory.find_call_by_filename(detected.file_name)
        if existing:
            logger.info(
                f"File {detected.file_name} already exists in DB with ID {existing.call_id}, skipping"
            )
            return None

        parsed = parse_recording_filename(detected.file_name)
        staff = None
        client = None

        if parsed:
            logger.info(
                f"Parsed TP filename: staff={parsed.staff_code}, client={parsed.client_identifier} "
                f"({'phone' if parsed.is_client_phone else 'code'}), time={parsed.call_datetime.isoformat()}"
            )

            staff = await self.directory.find_staff_by_code(parsed.staff_code)
            if staff:
                logger.info(f"Found staff: {staff.name} (TP code: {parsed.staff_code})")
            else:
                logger.warning(f"Staff not found for TP code: {parsed.staff_code}")

            if parsed.is_client_phone:
                client = await self.directory.find_client_by_phone(parsed.client_identifier)
            else:
                client = await self.directory.find_client_by_code(parsed.client_identifier)

            if client:
                logger.info(f"Found client: {client.company_name} ({parsed.client_identifier})")
            else:
                logger.warning(f"Client not found for: {parsed.client_identifier}")
        else:
            logger.warning(f"File '{detected.file_name}' does not match TP naming convention")

        call_duration = await asyncio.to_thread(read_call_duration, detected.path)

        if client:
            client_name = client.company_name
        elif parsed and parsed.is_client_phone:
            client_name = f"phone: {parsed.client_identifier}"
        else:
            client_name = UNIDENTIFIED

        if parsed and parsed.is_client_phone:
            phone_number = parsed.client_identifier
        else:
            phone_number = (client.contact_number if client else None) or ''

        return await self.directory.create_call(
            recording_file_name=detected.file_name,
            call_date=parsed.call_datetime.date() if parsed else date.today(),
            caller_name=staff.name if staff else UNIDENTIFIED,
            client_name=client_name,
            phone_number=phone_number,
            call_duration=call_duration,
            staff_id=staff.staff_id if staff else None,
            client_id=client.client_id if client else None,
        )

    async def handle_removed(self, removed: RemovedFile) -> bool:
        """
        Mark the call for a deleted recording as missing its file.

        Advisory only: failures are logged. Returns True if a call was updated.
        """
        if not is_audio_file(removed.file_name):
            return False

        try:
            call = await self.directory.find_call_by_filename(removed.file_name)
            if call is None:
                logger.info(f"Deleted file {removed.file_name} has no call record")
                return False
            await self.directory.set_call_file_exists(call.call_id, False)
        except Exception as e:
            logger.error(f"Failed to mark {removed.file_name} as deleted: {e}", exc_info=True)
            return False

        logger.info(f"Marked call {call.call_id} as file_exists=False")
        return True
