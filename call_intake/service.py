"""
Wiring for the intake service.

Builds the full object graph up front so every component receives its
collaborators through its constructor.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .config import Settings
from .coordinator import IngestionCoordinator
from .directory import CallDirectory
from .file_watcher import FolderWatcher
from .notifier import Notifier, LoggingNotifier
from .pipeline import PipelineWorkerPool, TranscriptionPipeline
from .providers import OpenAIProvider

logger = logging.getLogger(__name__)


class CallIntakeService:
    """Directory, providers, pipeline, coordinator and watcher for one folder."""

    def __init__(
        self,
        directory: CallDirectory,
        transcriber,
        extractor,
        notifier: Notifier,
        settings: Settings,
    ):
        self.settings = settings
        self.directory = directory
        self.notifier = notifier
        self.pipeline = TranscriptionPipeline(directory, transcriber, extractor, notifier)
        self.workers = PipelineWorkerPool(
            self.pipeline,
            workers=settings.pipeline_workers,
            queue_size=settings.pipeline_queue_size,
            max_attempts=settings.transcription_max_attempts,
            retry_base_seconds=settings.retry_base_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )
        self.coordinator = IngestionCoordinator(directory, notifier, self.workers)
        self.watcher = FolderWatcher(
            self.coordinator,
            scan_delay=settings.scan_delay_seconds,
            stability_seconds=settings.write_stability_seconds,
            poll_seconds=settings.write_poll_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings, notifier: Optional[Notifier] = None) -> "CallIntakeService":
        directory = CallDirectory.from_url(
            settings.database_url,
            system_actor_name=settings.system_actor_name,
            system_actor_email=settings.system_actor_email,
        )
        provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            transcribe_model=settings.transcribe_model,
            language=settings.transcription_language,
        )
        return cls(directory, provider, provider, notifier or LoggingNotifier(), settings)

    async def start(self, watch_directory: Optional[Union[str, Path]] = None) -> bool:
        """Create tables, start the workers, then scan and watch the folder."""
        await self.directory.create_schema()
        self.workers.start()
        return await self.watcher.start(watch_directory or self.settings.watch_directory)

    async def close(self) -> None:
        await self.watcher.stop()
        await self.workers.stop()
        await self.directory.close()
        logger.info("Call intake service closed")
