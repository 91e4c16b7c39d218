"""
Push notifications to the presentation layer.

Delivery is fire-and-forget: callers log notifier failures and carry on.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import Call, Message

logger = logging.getLogger(__name__)

CALL_CREATED = 'create-new-call'
TRANSCRIPT_UPDATED = 'transcript-updated'
TASKS_EXTRACTED = 'tasks-extracted'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_call(call: Call) -> Dict[str, Any]:
    return {
        'id': call.call_id,
        'date': call.call_date.isoformat() if call.call_date else None,
        'caller_name': call.caller_name,
        'client_name': call.client_name,
        'phone_number': call.phone_number,
        'recording_file_name': call.recording_file_name,
        'call_duration': call.call_duration,
        'transcript': call.transcript,
        'file_exists': call.file_exists,
    }


def serialize_message(message: Message, candidate_tasks: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    if candidate_tasks is None:
        candidate_tasks = json.loads(message.payload or '{}').get('candidate_tasks', [])
    return {
        'id': message.message_id,
        'author_id': message.author_id,
        'call_id': message.call_id,
        'content': message.content,
        'candidate_tasks': candidate_tasks,
    }


@dataclass
class Notification:
    channel: str
    payload: Dict[str, Any]
    timestamp: str = field(default_factory=_now_iso)


class Notifier:
    """Base notifier; subclasses decide where events go."""

    async def publish(self, notification: Notification) -> None:
        raise NotImplementedError

    async def call_created(self, call: Call) -> None:
        await self.publish(Notification(CALL_CREATED, {
            'call': serialize_call(call),
            'file_name': call.recording_file_name,
        }))

    async def transcript_updated(self, call_id: int, transcript: str) -> None:
        await self.publish(Notification(TRANSCRIPT_UPDATED, {
            'call_id': call_id,
            'transcript': transcript,
        }))

    async def tasks_extracted(
        self,
        call_id: int,
        message: Message,
        candidate_tasks: List[Dict[str, Any]],
    ) -> None:
        await self.publish(Notification(TASKS_EXTRACTED, {
            'call_id': call_id,
            'message': serialize_message(message, candidate_tasks),
        }))


class LoggingNotifier(Notifier):
    """Writes every event to the log."""

    async def publish(self, notification: Notification) -> None:
        logger.info(f"Event {notification.channel}: {notification.payload}")


class QueueNotifier(Notifier):
    """Pushes events onto an asyncio queue for a UI consumer."""

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue = queue if queue is not None else asyncio.Queue()

    async def publish(self, notification: Notification) -> None:
        self.queue.put_nowait(notification)
        logger.debug(f"Queued {notification.channel} event")
