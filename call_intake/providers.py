"""
Speech-to-text and task extraction providers.

Uses OpenAI Whisper to transcribe call recordings and a chat model to propose
candidate tasks from the transcript. Extraction is best-effort: malformed
model output degrades to zero tasks.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .config import DEFAULT_OPENAI_MODEL, DEFAULT_TRANSCRIBE_MODEL
from .errors import ConfigurationError, ExtractionError, TranscriptionError

logger = logging.getLogger(__name__)

# Whisper upload limit
MAX_AUDIO_BYTES = 25 * 1024 * 1024
DEFAULT_DUE_DAYS = 7
TASK_CATEGORIES = ['tax filing', 'consultation', 'accounting', 'legal', 'other']

SYSTEM_PROMPT = (
    "You are a task management specialist at a tax accounting office. "
    "You analyze phone calls between staff and clients and extract actionable work items."
)


@dataclass
class CandidateTask:
    """A proposed work item awaiting human review and assignment."""

    id: int
    title: str
    start_date: str
    due_date: str
    category: str = 'other'
    description: str = ''
    priority: str = 'normal'
    assignee: str = ''
    client_id: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Shape stored in a message's metadata."""
        return {
            'id': self.id,
            'title': self.title,
            'start_date': self.start_date,
            'due_date': self.due_date,
            'category': self.category,
            'description': self.description,
            'priority': self.priority,
            'tags': list(self.tags),
            'assignee': self.assignee,
            'client_id': self.client_id,
        }


def parse_json_response(response: str) -> Any:
    """Parse JSON from an LLM response, handling markdown code fences."""
    content = (response or '').strip()

    # Remove markdown code blocks if present
    if content.startswith('```json'):
        content = content[7:]
    elif content.startswith('```'):
        content = content[3:]
    if content.endswith('```'):
        content = content[:-3]
    content = content.strip()

    if not content:
        return None

    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON response: {e}")
        logger.debug(f"Response content: {content[:500]}...")
        return None


def _normalize_due_date(value: Any, today: date) -> str:
    if isinstance(value, str) and value.strip():
        try:
            return datetime.strptime(value.strip(), '%Y-%m-%d').date().isoformat()
        except ValueError:
            logger.warning(f"Could not parse due date: {value}")
    return (today + timedelta(days=DEFAULT_DUE_DAYS)).isoformat()


def build_candidate_tasks(data: Any, today: Optional[date] = None) -> List[CandidateTask]:
    """
    Convert decoded model output into candidate tasks.

    Accepts {"tasks": [...]} or a bare list. Anything else, and entries
    without a title, are dropped.
    """
    today = today or date.today()

    if isinstance(data, dict):
        items = data.get('tasks', [])
    elif isinstance(data, list):
        items = data
    else:
        return []
    if not isinstance(items, list):
        return []

    tasks = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get('title') or '').strip()
        if not title:
            continue

        category = str(item.get('category') or '').strip() or 'other'
        priority = str(item.get('priority') or '').strip().lower()
        tags = item.get('tags') if isinstance(item.get('tags'), list) else []

        tasks.append(CandidateTask(
            id=len(tasks) + 1,
            title=title,
            start_date=today.isoformat(),
            due_date=_normalize_due_date(item.get('due_date') or item.get('dueDate'), today),
            category=category,
            description=str(item.get('description') or '').strip(),
            priority=priority if priority in ('high', 'normal', 'low') else 'normal',
            tags=[str(tag) for tag in tags],
        ))
    return tasks


class OpenAIProvider:
    """
    Transcription and task extraction backed by the OpenAI API.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        transcribe_model: str = DEFAULT_TRANSCRIBE_MODEL,
        language: Optional[str] = 'ko',
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY not found in environment variables.")
            client = AsyncOpenAI(api_key=api_key)

        self.openai_client = client
        self.model = model
        self.transcribe_model = transcribe_model
        self.language = language

        logger.info(f"OpenAIProvider initialized with model: {self.model}")

    async def transcribe(self, audio: bytes, file_name: str) -> str:
        """Transcribe an audio buffer. Raises TranscriptionError on failure."""
        if not audio:
            raise TranscriptionError(f"Audio file is empty: {file_name}")
        if len(audio) > MAX_AUDIO_BYTES:
            raise TranscriptionError(
                f"Audio file too large ({len(audio)} bytes, max {MAX_AUDIO_BYTES}): {file_name}"
            )

        request: Dict[str, Any] = {
            'model': self.transcribe_model,
            'file': (file_name, audio),
        }
        if self.language:
            request['language'] = self.language

        logger.info(f"Starting transcription for: {file_name}")
        try:
            transcription = await self.openai_client.audio.transcriptions.create(**request)
        except Exception as e:
            raise TranscriptionError(f"Audio transcription failed for {file_name}: {e}") from e

        text = getattr(transcription, 'text', transcription)
        return text if isinstance(text, str) else ''

    async def extract_tasks(
        self,
        transcript: str,
        client_name: Optional[str] = None,
    ) -> List[CandidateTask]:
        """Propose candidate tasks for a call transcript."""
        client_line = f"Client: {client_name}\n" if client_name else ''

        prompt = f"""The following is a phone call between a tax office staff member and a client.
Extract the concrete work items that need to be done as a result of this call.

{client_line}Transcript:
{transcript}

Guidelines:
- Only extract concrete tasks that someone actually has to do
- Do not extract simple questions or general consultation as tasks
- Set priority from the urgency and importance of the work (high, normal or low)
- Category must be one of: {', '.join(TASK_CATEGORIES)}
- Estimate a reasonable due date from the conversation
- If there are no tasks, return an empty list

Return your response in this exact JSON format:
{{
    "tasks": [
        {{
            "title": "Task title",
            "description": "Details of what needs to be done",
            "priority": "high|normal|low",
            "category": "Task category",
            "due_date": "YYYY-MM-DD"
        }}
    ]
}}"""

        try:
            response = await self.openai_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,  # Low temperature for consistent extraction
                max_tokens=1500,
            )
        except Exception as e:
            raise ExtractionError(f"Task extraction request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.info("No tasks extracted from transcript (empty response)")
            return []

        tasks = build_candidate_tasks(parse_json_response(content))
        logger.info(f"Extracted {len(tasks)} tasks from transcript")
        return tasks
