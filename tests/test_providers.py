from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from call_intake.errors import ConfigurationError, ExtractionError, TranscriptionError
from call_intake.providers import (
    MAX_AUDIO_BYTES,
    OpenAIProvider,
    build_candidate_tasks,
    parse_json_response,
)

TODAY = date(2025, 9, 15)


def _client(transcript="hello there", content='{"tasks": []}'):
    client = Mock()
    client.audio.transcriptions.create = AsyncMock(return_value=SimpleNamespace(text=transcript))
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    ))
    return client


def test_parse_json_response_strips_code_fences() -> None:
    assert parse_json_response('```json\n{"tasks": []}\n```') == {"tasks": []}
    assert parse_json_response('```\n[1, 2]\n```') == [1, 2]
    assert parse_json_response('{"a": 1}') == {"a": 1}


def test_parse_json_response_bad_input() -> None:
    assert parse_json_response("") is None
    assert parse_json_response(None) is None
    assert parse_json_response("not json at all") is None


def test_build_candidate_tasks() -> None:
    data = {
        "tasks": [
            {"title": "File VAT return", "category": "tax filing", "due_date": "2025-09-25", "priority": "HIGH"},
            {"title": "  ", "category": "other"},
            "garbage",
            {"title": "Call back", "dueDate": "someday", "description": "Ask about receipts", "tags": ["vat", 2025]},
        ]
    }

    tasks = build_candidate_tasks(data, today=TODAY)

    assert [t.id for t in tasks] == [1, 2]
    assert tasks[0].title == "File VAT return"
    assert tasks[0].start_date == "2025-09-15"
    assert tasks[0].due_date == "2025-09-25"
    assert tasks[0].priority == "high"
    assert tasks[1].category == "other"
    assert tasks[1].due_date == "2025-09-22"
    assert tasks[1].to_payload() == {
        "id": 2,
        "title": "Call back",
        "start_date": "2025-09-15",
        "due_date": "2025-09-22",
        "category": "other",
        "description": "Ask about receipts",
        "priority": "normal",
        "tags": ["vat", "2025"],
        "assignee": "",
        "client_id": None,
    }


def test_build_candidate_tasks_accepts_bare_list() -> None:
    assert [t.title for t in build_candidate_tasks([{"title": "A"}], today=TODAY)] == ["A"]
    assert build_candidate_tasks(None) == []
    assert build_candidate_tasks({"tasks": "nope"}) == []


def test_provider_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        OpenAIProvider(api_key=None)


async def test_transcribe_sends_audio() -> None:
    client = _client(transcript="Please file the VAT return.")
    provider = OpenAIProvider(client=client, transcribe_model="whisper-1", language="ko")

    text = await provider.transcribe(b"RIFFdata", "call.wav")

    assert text == "Please file the VAT return."
    client.audio.transcriptions.create.assert_awaited_once_with(
        model="whisper-1", file=("call.wav", b"RIFFdata"), language="ko"
    )


async def test_transcribe_rejects_empty_and_oversized_audio() -> None:
    client = _client()
    provider = OpenAIProvider(client=client)

    with pytest.raises(TranscriptionError):
        await provider.transcribe(b"", "empty.wav")
    with pytest.raises(TranscriptionError):
        await provider.transcribe(b"\x00" * (MAX_AUDIO_BYTES + 1), "huge.wav")
    client.audio.transcriptions.create.assert_not_awaited()


async def test_transcribe_wraps_api_errors() -> None:
    client = _client()
    client.audio.transcriptions.create.side_effect = RuntimeError("503")
    provider = OpenAIProvider(client=client)

    with pytest.raises(TranscriptionError):
        await provider.transcribe(b"audio", "call.wav")


async def test_extract_tasks() -> None:
    client = _client(content='```json\n{"tasks": [{"title": "Send invoice", "category": "accounting"}]}\n```')
    provider = OpenAIProvider(client=client, model="gpt-4.1-mini")

    tasks = await provider.extract_tasks("transcript text", client_name="Hanbit Trading")

    assert [t.title for t in tasks] == ["Send invoice"]
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4.1-mini"
    assert kwargs["temperature"] == 0.1
    assert "Hanbit Trading" in kwargs["messages"][1]["content"]
    assert "transcript text" in kwargs["messages"][1]["content"]


async def test_extract_tasks_malformed_output_is_zero_tasks() -> None:
    provider = OpenAIProvider(client=_client(content="Sorry, I can't help with that."))

    assert await provider.extract_tasks("transcript") == []


async def test_extract_tasks_empty_response() -> None:
    provider = OpenAIProvider(client=_client(content=None))

    assert await provider.extract_tasks("transcript") == []


async def test_extract_tasks_wraps_api_errors() -> None:
    client = _client()
    client.chat.completions.create.side_effect = RuntimeError("rate limited")
    provider = OpenAIProvider(client=client)

    with pytest.raises(ExtractionError):
        await provider.extract_tasks("transcript")
