"""
Call Intake - Main Entry Point

This script provides a unified interface for running different components:
- Folder Watcher: Ingest call recordings dropped into the recordings folder
- Direct Processing: Ingest a single recording file
- Setup: Create database tables

Usage:
    python main.py watch [DIR]    # Watch the recordings folder
    python main.py process FILE   # Ingest a specific recording
    python main.py setup          # Create database tables
    python main.py help           # Show this help message
"""

import sys
import asyncio
from pathlib import Path


def show_help():
    """Display help information."""
    print("""
Call Intake - Call Recording Ingestion System
=============================================

Watches a folder for call recordings, creates a call record for each one,
then transcribes it and extracts candidate tasks in the background.

COMMANDS
--------

  python main.py watch [DIR]
      Scan DIR (default: WATCH_DIRECTORY) for existing recordings, then
      keep watching it for new and deleted files. Press Ctrl+C to stop.

  python main.py process <file>
      Ingest a single recording and wait for its transcript and tasks.

  python main.py setup
      Create database tables and the system user.

  python main.py help
      Show this help message.

FILENAME CONVENTION
-------------------

  {staffCode}-{clientCode or phone}_{YYYYMMDDHHMMSS}_mix.wav
  e.g. 0400-01052913391_20250915134049_mix.wav

  Other audio files (.wav .mp3 .m4a .aac .flac .ogg) are still ingested,
  with caller and client left unidentified.

ENVIRONMENT VARIABLES
---------------------

  DATABASE_URL          - Database connection URL (required)
  OPENAI_API_KEY        - OpenAI API key (required)
  OPENAI_MODEL          - Model for task extraction (default: gpt-4.1-mini)
  WATCH_DIRECTORY       - Folder to watch (default: ./recordings)
  PIPELINE_WORKERS      - Concurrent transcription jobs (default: 2)

For the full list, see .env.example.
""")


def print_notification(notification):
    """Print a service event to the console."""
    from call_intake.notifier import CALL_CREATED, TRANSCRIPT_UPDATED, TASKS_EXTRACTED

    payload = notification.payload
    print(f"\n{'='*60}")
    if notification.channel == CALL_CREATED:
        call = payload['call']
        print("NEW CALL RECORDED")
        print(f"{'='*60}")
        print(f"Call ID:  {call['id']}")
        print(f"File:     {call['recording_file_name']}")
        print(f"Date:     {call['date']}")
        print(f"Caller:   {call['caller_name']}")
        print(f"Client:   {call['client_name']}")
        print(f"Duration: {call['call_duration']}")
    elif notification.channel == TRANSCRIPT_UPDATED:
        print(f"TRANSCRIPT READY (call {payload['call_id']})")
        print(f"{'='*60}")
        print(f"{payload['transcript'][:300]}...")
    elif notification.channel == TASKS_EXTRACTED:
        message = payload['message']
        print(f"TASKS EXTRACTED (call {payload['call_id']})")
        print(f"{'='*60}")
        print(message['content'])
        for task in message['candidate_tasks']:
            print(f"  - {task['title']} (due {task['due_date']})")
    print(f"{'='*60}")


async def _print_notifications(queue):
    while True:
        notification = await queue.get()
        print_notification(notification)


async def run_watcher(directory=None):
    """Start the folder watcher."""
    from call_intake import CallIntakeService, QueueNotifier, Settings, configure_logging

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)

    watch_dir = Path(directory) if directory else settings.watch_directory
    if not watch_dir.exists():
        print(f"Creating recordings directory: {watch_dir}")
        watch_dir.mkdir(parents=True, exist_ok=True)

    notifier = QueueNotifier()
    service = CallIntakeService.from_settings(settings, notifier=notifier)
    printer = asyncio.create_task(_print_notifications(notifier.queue))

    try:
        if not await service.start(watch_dir):
            print(f"ERROR: Could not watch {watch_dir}")
            return

        print(f"\n{'='*60}")
        print("FOLDER WATCHER ACTIVE")
        print(f"{'='*60}")
        print(f"Watching: {watch_dir}")
        print("\nDrop call recordings into this folder to process them.")
        print("Press Ctrl+C to stop watching.\n")

        await service.watcher.run_forever()
    finally:
        printer.cancel()
        await service.close()
        print("\nFolder watcher stopped.")


async def process_file(file_path: str):
    """Ingest a specific recording."""
    from call_intake import CallIntakeService, DetectedFile, Settings, configure_logging

    path = Path(file_path)
    if not path.exists():
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)

    print(f"\nProcessing: {path}")
    print("-" * 50)

    service = CallIntakeService.from_settings(settings)

    try:
        await service.directory.create_schema()
        service.workers.start()

        call = await service.coordinator.handle(DetectedFile.from_path(path))
        if call is None:
            print("No new call created (already ingested or failed, see log).")
            return

        print("Call created, waiting for transcription...")
        await service.workers.join()

        messages = await service.directory.list_messages(call.call_id)
        refreshed = await service.directory.get_call(call.call_id)

        print("\n" + "=" * 50)
        print("PROCESSING COMPLETE")
        print("=" * 50)
        print(f"Call ID: {call.call_id}")
        print(f"Caller: {call.caller_name}")
        print(f"Client: {call.client_name}")
        print(f"Duration: {call.call_duration}")
        print(f"Transcript: {'yes' if refreshed and refreshed.transcript else 'no'}")
        for message in messages:
            print(f"Message: {message.content}")
        print("=" * 50)

    finally:
        await service.close()


async def run_setup():
    """Run database setup."""
    from call_intake import CallDirectory, Settings, configure_logging

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)

    print("Setting up database tables...")

    directory = CallDirectory.from_url(
        settings.database_url,
        system_actor_name=settings.system_actor_name,
        system_actor_email=settings.system_actor_email,
    )

    try:
        await directory.create_schema()
        await directory.find_or_create_system_actor()
        print("Database tables created/verified successfully.")

        counts = await directory.count_rows()
        print(f"\nCurrent data:")
        print(f"  - {counts['staff']} staff")
        print(f"  - {counts['clients']} clients")
        print(f"  - {counts['calls']} calls")
        print(f"  - {counts['messages']} messages")

    finally:
        await directory.close()


def main():
    """Main entry point."""
    if len(sys.argv) < 2:
        show_help()
        return

    command = sys.argv[1].lower()

    if command == 'help':
        show_help()

    elif command == 'watch':
        directory = sys.argv[2] if len(sys.argv) > 2 else None
        try:
            asyncio.run(run_watcher(directory))
        except KeyboardInterrupt:
            print("\n\nStopping folder watcher...")

    elif command == 'process':
        if len(sys.argv) < 3:
            print("Error: Please provide a file path")
            print("Usage: python main.py process <file>")
            sys.exit(1)
        asyncio.run(process_file(sys.argv[2]))

    elif command == 'setup':
        asyncio.run(run_setup())

    else:
        print(f"Unknown command: {command}")
        print("Run 'python main.py help' for usage information.")
        sys.exit(1)


if __name__ == "__main__":
    main()
