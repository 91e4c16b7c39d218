"""
File Watcher for Call Recordings

Monitors a recordings folder and feeds audio files to the ingestion handler:
- Files already in the folder are scanned first, one at a time
- New files are reported once their size stops changing (copy finished)
- Deleted files are reported so their calls can be flagged

Watchdog delivers events on its observer thread; they are forwarded to the
event loop and consumed from a single queue in arrival order.
"""

import os
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .audio import is_audio_file
from .coordinator import DetectedFile, RemovedFile
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _is_hidden(path: Path) -> bool:
    return path.name.startswith('.')


class FolderWatcherHandler(FileSystemEventHandler):
    """Translates watchdog events into calls on the event loop."""

    def __init__(self, watch_directory: Path, loop: asyncio.AbstractEventLoop, on_added, on_removed):
        """
        Initialize the watcher handler.

        Args:
            watch_directory: Path to the recordings directory
            loop: Event loop that owns the callbacks
            on_added: Called with the path of a created/modified audio file
            on_removed: Called with the path of a deleted audio file
        """
        self.watch_directory = Path(watch_directory)
        self.resolved_directory = self.watch_directory.resolve()
        self.loop = loop
        self.on_added = on_added
        self.on_removed = on_removed

    def on_created(self, event):
        """Called when a file or directory is created."""
        if not event.is_directory:
            self._added(event.src_path)

    def on_modified(self, event):
        """Called while a file is still being written."""
        if not event.is_directory:
            self._added(event.src_path)

    def on_deleted(self, event):
        """Called when a file or directory is deleted."""
        if not event.is_directory:
            self._removed(event.src_path)

    def on_moved(self, event):
        """A rename is a removal of the old name and an addition of the new one."""
        if event.is_directory:
            return
        self._removed(event.src_path)
        self._added(event.dest_path)

    def _accepts(self, raw_path) -> Optional[Path]:
        file_path = Path(os.fsdecode(raw_path))

        if _is_hidden(file_path):
            return None
        # Only direct children of the watched folder; some backends report real paths
        if file_path.parent.resolve() != self.resolved_directory:
            return None
        if not is_audio_file(file_path.name):
            logger.debug(f"Skipping non-audio file: {file_path.name}")
            return None
        return self.watch_directory / file_path.name

    def _added(self, raw_path) -> None:
        file_path = self._accepts(raw_path)
        if file_path is not None:
            self.loop.call_soon_threadsafe(self.on_added, str(file_path))

    def _removed(self, raw_path) -> None:
        file_path = self._accepts(raw_path)
        if file_path is not None:
            self.loop.call_soon_threadsafe(self.on_removed, str(file_path))


class FolderWatcher:
    """
    Watches a single recordings folder.

    The handler must provide async handle(DetectedFile) and
    handle_removed(RemovedFile); IngestionCoordinator does.
    """

    def __init__(
        self,
        handler=None,
        scan_delay: float = 0.5,
        stability_seconds: float = 2.0,
        poll_seconds: float = 0.1,
        observer_factory=Observer,
    ):
        self.handler = handler
        self.scan_delay = scan_delay
        self.stability_seconds = stability_seconds
        self.poll_seconds = poll_seconds
        self.observer_factory = observer_factory

        self.observer = None
        self.watch_directory: Optional[Path] = None
        self.degraded = False
        self.events: Optional[asyncio.Queue] = None
        self._event_handler: Optional[FolderWatcherHandler] = None
        self._consumer: Optional[asyncio.Task] = None
        self._settling: Dict[str, asyncio.Task] = {}

    @property
    def watched_folder(self) -> Optional[Path]:
        return self.watch_directory

    def is_watching(self) -> bool:
        return self.observer is not None and not self.degraded

    async def start(self, directory: Union[str, Path]) -> bool:
        """
        Scan the folder, then start watching it.

        Returns False (and logs) if the folder can't be watched.
        Raises ConfigurationError if no handler was given.
        """
        if self.handler is None:
            raise ConfigurationError("File detection handler not set")

        if self.observer is not None:
            await self.stop()

        directory = Path(directory).absolute()
        if not directory.is_dir():
            logger.error(f"Directory does not exist or is not a directory: {directory}")
            return False

        loop = asyncio.get_running_loop()
        self.events = asyncio.Queue()
        self.degraded = False

        logger.info(f"Starting to watch local folder: {directory}")
        scanned = await self.scan_existing_files(directory)
        logger.info("Existing files scan completed")

        event_handler = FolderWatcherHandler(directory, loop, self._on_added, self._on_removed)
        observer = self.observer_factory()
        try:
            observer.schedule(
                event_handler,
                str(directory),
                recursive=False  # Only watch the root, not subfolders
            )
            observer.start()
        except Exception as e:
            logger.error(f"Failed to start watching {directory}: {e}", exc_info=True)
            return False

        self.observer = observer
        self.watch_directory = directory
        self._event_handler = event_handler
        self._consumer = asyncio.create_task(self._consume(), name="folder-watcher-consumer")

        # Files copied in while the scan was running
        for path in self._list_audio_files(directory):
            if path.name not in scanned:
                self._on_added(str(path))

        logger.info(f"Watching for audio files in: {directory}")
        return True

    async def stop(self) -> None:
        """Stop watching. Safe to call more than once."""
        for task in list(self._settling.values()):
            task.cancel()
        self._settling.clear()

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        if self.observer is not None:
            observer = self.observer
            self.observer = None
            try:
                observer.stop()
                await asyncio.to_thread(observer.join)
            except Exception as e:
                logger.error(f"Error while stopping observer: {e}", exc_info=True)
            logger.info("Folder watching stopped")

        self.watch_directory = None
        self._event_handler = None

    async def run_forever(self, check_interval: float = 1.0) -> None:
        """Keep the watcher alive until cancelled."""
        while True:
            await asyncio.sleep(check_interval)
            if self.observer is None or self.degraded:
                continue
            if not self.observer.is_alive():
                self.degraded = True
                logger.error(
                    f"Observer for {self.watch_directory} stopped unexpectedly; "
                    "no new files will be detected until the watcher is restarted"
                )
            elif not self._folder_available():
                # The observer thread outlives a deleted folder but reports nothing
                self.degraded = True
                logger.error(
                    f"Watched folder {self.watch_directory} was removed or became unreadable; "
                    "no new files will be detected until the watcher is restarted"
                )

    def _folder_available(self) -> bool:
        directory = self.watch_directory
        return (
            directory is not None
            and directory.is_dir()
            and os.access(directory, os.R_OK | os.X_OK)
        )

    async def wait_idle(self) -> None:
        """Wait until every pending and queued event has been handled."""
        while self._settling:
            await asyncio.gather(*list(self._settling.values()), return_exceptions=True)
        if self.events is not None:
            await self.events.join()

    def _list_audio_files(self, directory: Path) -> List[Path]:
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.error(f"Failed to list {directory}: {e}")
            return []
        return [
            path for path in entries
            if not _is_hidden(path) and is_audio_file(path.name) and path.is_file()
        ]

    async def scan_existing_files(self, directory: Path) -> Set[str]:
        """
        Hand every audio file already in the folder to the handler, one by one.

        Returns the names of the files that were scanned.
        """
        audio_files = self._list_audio_files(directory)
        logger.info(f"[SCAN] Found {len(audio_files)} audio files in folder")

        scanned = set()
        for index, path in enumerate(audio_files, 1):
            logger.info(f"[SCAN] Processing file {index}/{len(audio_files)}: {path.name}")
            scanned.add(path.name)
            try:
                await self.handler.handle(DetectedFile.from_path(path))
            except Exception as e:
                logger.error(f"[SCAN] Error processing file {path.name}: {e}", exc_info=True)

            # Avoid overwhelming downstream services
            if index < len(audio_files) and self.scan_delay > 0:
                await asyncio.sleep(self.scan_delay)

        logger.info(f"[SCAN] Finished processing {len(audio_files)} existing files")
        return scanned

    def _on_added(self, path: str) -> None:
        if path in self._settling:
            # The running stability check picks up further writes
            return
        task = asyncio.create_task(self._await_write_finish(path))
        self._settling[path] = task
        task.add_done_callback(lambda done, key=path: self._forget_settling(key, done))

    def _forget_settling(self, path: str, task: asyncio.Task) -> None:
        if self._settling.get(path) is task:
            del self._settling[path]

    def _on_removed(self, path: str) -> None:
        pending = self._settling.pop(path, None)
        if pending is not None:
            pending.cancel()
        self.events.put_nowait(RemovedFile.from_path(path))

    async def _await_write_finish(self, path: str) -> None:
        loop = asyncio.get_running_loop()
        last_signature = None
        stable_since = loop.time()

        while True:
            try:
                stat = os.stat(path)
            except FileNotFoundError:
                logger.debug(f"File disappeared before it settled: {path}")
                return

            signature = (stat.st_size, stat.st_mtime_ns)
            now = loop.time()
            if signature != last_signature:
                last_signature = signature
                stable_since = now
            elif now - stable_since >= self.stability_seconds:
                break
            await asyncio.sleep(self.poll_seconds)

        logger.info(f"New audio file detected: {Path(path).name}")
        self.events.put_nowait(DetectedFile.from_path(path))

    async def _consume(self) -> None:
        while True:
            event = await self.events.get()
            try:
                if isinstance(event, RemovedFile):
                    logger.info(f"Audio file deleted: {event.file_name}")
                    await self.handler.handle_removed(event)
                else:
                    await self.handler.handle(event)
            except Exception as e:
                logger.error(f"Error handling {event.file_name}: {e}", exc_info=True)
            finally:
                self.events.task_done()
