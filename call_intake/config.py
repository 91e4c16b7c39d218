"""
Configuration for the Call Intake service.

Settings are read from environment variables (optionally from a .env file):
- DATABASE_URL: SQLAlchemy connection URL (PostgreSQL is rewritten to asyncpg)
- OPENAI_API_KEY / OPENAI_MODEL / OPENAI_TRANSCRIBE_MODEL: provider access
- WATCH_DIRECTORY: folder where the recording system drops audio files
- Pacing, write-stability and worker pool tuning values
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables
load_dotenv()

DEFAULT_OPENAI_MODEL = 'gpt-4.1-mini'
DEFAULT_TRANSCRIBE_MODEL = 'whisper-1'
DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Ensure the DATABASE_URL uses an async driver (asyncpg for PostgreSQL)."""
    if not url:
        return url
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgresql+psycopg2://'):
        return url.replace('postgresql+psycopg2://', 'postgresql+asyncpg://', 1)
    return url


def get_watch_directory() -> Path:
    """Get the path to the default recordings directory."""
    # Project root is the parent of the call_intake package
    project_root = Path(__file__).parent.parent
    return project_root / "recordings"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the intake service."""

    database_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    transcribe_model: str = DEFAULT_TRANSCRIBE_MODEL
    transcription_language: Optional[str] = 'ko'
    watch_directory: Path = get_watch_directory()
    scan_delay_seconds: float = 0.5
    write_stability_seconds: float = 2.0
    write_poll_seconds: float = 0.1
    pipeline_workers: int = 2
    pipeline_queue_size: int = 100
    transcription_max_attempts: int = 1
    retry_base_seconds: float = 30.0
    retry_max_seconds: float = 600.0
    system_actor_name: str = 'Intake Assistant'
    system_actor_email: str = 'assistant@system.local'
    log_level: str = 'INFO'
    log_file: Optional[str] = 'call_intake.log'

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        watch_directory = os.getenv('WATCH_DIRECTORY')
        language = os.getenv('TRANSCRIPTION_LANGUAGE', 'ko').strip()

        return cls(
            database_url=normalize_database_url(os.getenv('DATABASE_URL')),
            openai_api_key=os.getenv('OPENAI_API_KEY'),
            openai_model=os.getenv('OPENAI_MODEL', DEFAULT_OPENAI_MODEL),
            transcribe_model=os.getenv('OPENAI_TRANSCRIBE_MODEL', DEFAULT_TRANSCRIBE_MODEL),
            transcription_language=language or None,
            watch_directory=Path(watch_directory) if watch_directory else get_watch_directory(),
            scan_delay_seconds=_env_float('SCAN_DELAY_SECONDS', 0.5),
            write_stability_seconds=_env_float('WRITE_STABILITY_SECONDS', 2.0),
            write_poll_seconds=_env_float('WRITE_POLL_SECONDS', 0.1),
            pipeline_workers=_env_int('PIPELINE_WORKERS', 2),
            pipeline_queue_size=_env_int('PIPELINE_QUEUE_SIZE', 100),
            transcription_max_attempts=_env_int('TRANSCRIPTION_MAX_ATTEMPTS', 1),
            retry_base_seconds=_env_float('RETRY_BASE_SECONDS', 30.0),
            retry_max_seconds=_env_float('RETRY_MAX_SECONDS', 600.0),
            system_actor_name=os.getenv('SYSTEM_ACTOR_NAME', 'Intake Assistant'),
            system_actor_email=os.getenv('SYSTEM_ACTOR_EMAIL', 'assistant@system.local'),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=os.getenv('LOG_FILE', 'call_intake.log') or None,
        )


def configure_logging(level: str = 'INFO', log_file: Optional[str] = 'call_intake.log') -> None:
    """Install console and file logging for the whole process."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=DEFAULT_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
