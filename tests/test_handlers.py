"""Tests for the note job handlers."""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from notequeue.core.errors import HandlerFailure, NoteGenerationError
from notequeue.core.handlers import HandlerRegistry, NoteJobHandlers
from notequeue.core.sources import Transcript
from notequeue.models.pydantic_models.jobs import MAX_TEXT_LENGTH, parse_job_input

LECTURE = "Mitochondria are the powerhouse of the cell and produce ATP."


class FakeTranscriber:
    def __init__(self, text: str):
        self.text = text
        self.urls = []

    async def transcribe(self, video_url: str) -> str:
        self.urls.append(video_url)
        return self.text


@pytest.fixture()
def progress():
    return []


@pytest.fixture()
def report(progress):
    async def _report(value: int) -> None:
        progress.append(value)

    return _report


@pytest.fixture()
def handlers(fake_generator):
    return NoteJobHandlers(fake_generator)


async def _job(store, job_factory, job_type, input_data):
    job_id = await job_factory(job_type=job_type, input_data=input_data)
    return await store.get_job(job_id)


def test_registry_covers_every_job_type(handlers):
    registry = handlers.registry()
    assert registry.job_types == [
        "file_notes",
        "text_notes",
        "video_notes",
        "youtube_notes",
    ]
    assert registry.get("text_notes") == handlers.text_notes


def test_registry_rejects_unknown_job_type():
    registry = HandlerRegistry()

    async def handler(job, report_progress):
        return None

    with pytest.raises(ValueError):
        registry.register("audio_notes", handler)


async def test_text_notes(handlers, fake_generator, store, job_factory, report, progress):
    job = await _job(
        store,
        job_factory,
        "text_notes",
        {"content": LECTURE, "options": {"generate_quiz": True, "language": "de"}},
    )

    output = await handlers.text_notes(job, report)

    assert progress == [10, 90]
    assert output["summary"] == "Mocked summary"
    assert len(output["quiz"]) == 1
    assert output["metadata"]["language"] == "de"
    assert output["metadata"]["original_content"] == LECTURE
    assert "generated_at" in output["metadata"]
    assert fake_generator.calls[0]["text"] == LECTURE
    assert fake_generator.calls[0]["options"]["generate_quiz"] is True


async def test_text_notes_truncates_original_content(handlers, store, job_factory, report):
    content = "word " * 200
    job = await _job(store, job_factory, "text_notes", {"content": content})

    output = await handlers.text_notes(job, report)

    assert output["metadata"]["original_content"].endswith("...")
    assert len(output["metadata"]["original_content"]) == 503


async def test_text_notes_wraps_generator_errors(
    handlers, fake_generator, store, job_factory, report
):
    fake_generator.fail_with = NoteGenerationError("All 1 chunks failed to process")
    job = await _job(store, job_factory, "text_notes", {"content": LECTURE})

    with pytest.raises(HandlerFailure, match="Text notes generation failed") as exc_info:
        await handlers.text_notes(job, report)
    assert isinstance(exc_info.value.__cause__, NoteGenerationError)


async def test_text_notes_rejects_short_content(handlers, store, job_factory, report):
    job = await _job(store, job_factory, "text_notes", {"content": "tiny"})

    with pytest.raises(ValidationError):
        await handlers.text_notes(job, report)


async def test_file_notes(
    handlers, fake_generator, store, job_factory, report, progress, monkeypatch
):
    extract = AsyncMock(return_value=LECTURE)
    monkeypatch.setattr("notequeue.core.handlers.extract_text_from_file", extract)
    job = await _job(
        store,
        job_factory,
        "file_notes",
        {
            "file_url": "https://files.example.com/biology.pdf",
            "file_name": "biology.pdf",
            "file_type": "pdf",
        },
    )

    output = await handlers.file_notes(job, report)

    extract.assert_awaited_once_with(
        "https://files.example.com/biology.pdf", "pdf", "biology.pdf"
    )
    assert progress == [10, 40, 90]
    assert fake_generator.calls[0]["title"] == "biology.pdf"
    assert output["metadata"]["extracted_text_length"] == len(LECTURE)


async def test_file_notes_with_no_text(handlers, store, job_factory, report, monkeypatch):
    monkeypatch.setattr(
        "notequeue.core.handlers.extract_text_from_file", AsyncMock(return_value="  ")
    )
    job = await _job(
        store,
        job_factory,
        "file_notes",
        {"file_url": "https://x/empty.txt", "file_name": "empty.txt", "file_type": "txt"},
    )

    with pytest.raises(HandlerFailure, match="No text could be extracted"):
        await handlers.file_notes(job, report)


async def test_video_notes_without_transcriber(handlers, store, job_factory, report):
    job = await _job(
        store, job_factory, "video_notes", {"video_url": "https://x/lecture.mp4"}
    )

    with pytest.raises(HandlerFailure, match="no video transcriber is configured"):
        await handlers.video_notes(job, report)


async def test_video_notes_with_transcriber(
    fake_generator, store, job_factory, report, progress
):
    transcriber = FakeTranscriber(LECTURE)
    handlers = NoteJobHandlers(fake_generator, transcriber=transcriber)
    job = await _job(
        store, job_factory, "video_notes", {"video_url": "https://x/lecture.mp4"}
    )

    output = await handlers.video_notes(job, report)

    assert transcriber.urls == ["https://x/lecture.mp4"]
    assert progress == [10, 50, 90]
    assert output["metadata"]["transcript_length"] == len(LECTURE)


async def test_youtube_notes_uses_transcript_language(
    handlers, fake_generator, store, job_factory, report, progress, monkeypatch
):
    fetch = AsyncMock(
        return_value=Transcript(text=LECTURE, language="pl", segments_count=3)
    )
    monkeypatch.setattr("notequeue.core.handlers.fetch_youtube_transcript", fetch)
    job = await _job(
        store,
        job_factory,
        "youtube_notes",
        {"youtube_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ"},
    )

    output = await handlers.youtube_notes(job, report)

    assert fetch.await_args.args[0] == "dQw4w9WgXcQ"
    assert progress == [10, 40, 90]
    assert fake_generator.calls[0]["options"]["language"] == "pl"
    assert output["metadata"]["video_id"] == "dQw4w9WgXcQ"
    assert output["metadata"]["segments_count"] == 3
    assert output["metadata"]["language"] == "pl"


async def test_youtube_notes_keeps_explicit_language(
    handlers, fake_generator, store, job_factory, report, monkeypatch
):
    monkeypatch.setattr(
        "notequeue.core.handlers.fetch_youtube_transcript",
        AsyncMock(return_value=Transcript(text=LECTURE, language="pl")),
    )
    job = await _job(
        store,
        job_factory,
        "youtube_notes",
        {"youtube_url": "https://youtu.be/dQw4w9WgXcQ", "options": {"language": "en"}},
    )

    await handlers.youtube_notes(job, report)

    assert fake_generator.calls[0]["options"]["language"] == "en"


async def test_build_notes_runs_without_a_job(handlers, fake_generator):
    payload = parse_job_input("text_notes", {"content": LECTURE})

    output = await handlers.build_notes(payload)

    assert output["summary"] == "Mocked summary"
    assert output["metadata"]["original_content"] == LECTURE
    assert fake_generator.calls[0]["text"] == LECTURE


async def test_build_notes_failure_has_no_job_id(handlers, fake_generator):
    fake_generator.fail_with = NoteGenerationError("quota exceeded")
    payload = parse_job_input("text_notes", {"content": LECTURE})

    with pytest.raises(HandlerFailure, match="quota exceeded") as exc_info:
        await handlers.build_notes(payload)
    assert exc_info.value.job_id is None


def test_text_content_length_limit():
    with pytest.raises(ValidationError, match="maximum length of 50000"):
        parse_job_input("text_notes", {"content": "a" * (MAX_TEXT_LENGTH + 1)})
