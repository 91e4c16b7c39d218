"""
Call Intake Module

This module provides functionality for:
- Watching a folder for call recordings (including files present at startup)
- Creating one call record per recording, resolving staff and client codes
  encoded in the filename
- Background speech-to-text and LLM-powered extraction of candidate tasks
"""

from .models import (
    Base,
    Call,
    Client,
    Message,
    Staff,
)
from .errors import (
    CallIntakeError,
    ConfigurationError,
    ExtractionError,
    ProviderError,
    TranscriptionError,
)
from .config import Settings, configure_logging
from .filename_parser import ParsedFilename, parse_recording_filename
from .directory import CallDirectory
from .providers import CandidateTask, OpenAIProvider
from .notifier import LoggingNotifier, Notifier, QueueNotifier
from .pipeline import PipelineOutcome, PipelineWorkerPool, TranscriptionJob, TranscriptionPipeline
from .coordinator import DetectedFile, IngestionCoordinator, RemovedFile
from .file_watcher import FolderWatcher, FolderWatcherHandler
from .service import CallIntakeService

__all__ = [
    "Base",
    "Call",
    "Client",
    "Message",
    "Staff",
    "CallIntakeError",
    "ConfigurationError",
    "ExtractionError",
    "ProviderError",
    "TranscriptionError",
    "Settings",
    "configure_logging",
    "ParsedFilename",
    "parse_recording_filename",
    "CallDirectory",
    "CandidateTask",
    "OpenAIProvider",
    "LoggingNotifier",
    "Notifier",
    "QueueNotifier",
    "PipelineOutcome",
    "PipelineWorkerPool",
    "TranscriptionJob",
    "TranscriptionPipeline",
    "DetectedFile",
    "IngestionCoordinator",
    "RemovedFile",
    "FolderWatcher",
    "FolderWatcherHandler",
    "CallIntakeService",
]
