"""
Job handlers - one per job type.

A handler receives the claimed job and a progress callback, and returns the
JSON-serializable output stored on the job. Any exception it raises fails the
attempt; the scheduler records it and decides whether to retry.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from notequeue.core.errors import HandlerFailure, SourceError
from notequeue.core.notes import GeneratedNotes, NoteGenerator
from notequeue.core.sources import (
    VideoTranscriber,
    extract_text_from_file,
    fetch_youtube_transcript,
)
from notequeue.models.enums import JobType
from notequeue.models.pydantic_models.jobs import (
    FileNotesInput,
    JobInput,
    JobRecord,
    TextNotesInput,
    VideoNotesInput,
    YouTubeNotesInput,
    parse_job_input,
)
from notequeue.utils import utc_now

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[Any]]
JobHandler = Callable[[JobRecord, ProgressCallback], Awaitable[Any]]


async def _ignore_progress(progress: int) -> None:
    return None


class HandlerRegistry:
    """Maps job types to handler coroutines."""

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[JobType(job_type).value] = handler

    def get(self, job_type: str) -> Optional[JobHandler]:
        return self._handlers.get(job_type)

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)


def _notes_output(notes: GeneratedNotes, metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "content": notes.content,
        "summary": notes.summary,
        "quiz": [q.model_dump() for q in notes.quiz],
        "partial_success": notes.partial_success,
        "metadata": {**metadata, "generated_at": utc_now().isoformat()},
    }


class NoteJobHandlers:
    """Default handlers for the four note job types."""

    def __init__(
        self,
        generator: NoteGenerator,
        transcriber: Optional[VideoTranscriber] = None,
    ):
        self.generator = generator
        self.transcriber = transcriber

    def registry(self) -> HandlerRegistry:
        registry = HandlerRegistry()
        registry.register(JobType.TEXT_NOTES.value, self.text_notes)
        registry.register(JobType.FILE_NOTES.value, self.file_notes)
        registry.register(JobType.VIDEO_NOTES.value, self.video_notes)
        registry.register(JobType.YOUTUBE_NOTES.value, self.youtube_notes)
        return registry

    async def text_notes(self, job: JobRecord, report_progress: ProgressCallback):
        payload = parse_job_input(job.job_type, job.input_data)
        return await self.build_text_notes(payload, report_progress, job.job_id)

    async def file_notes(self, job: JobRecord, report_progress: ProgressCallback):
        payload = parse_job_input(job.job_type, job.input_data)
        return await self.build_file_notes(payload, report_progress, job.job_id)

    async def video_notes(self, job: JobRecord, report_progress: ProgressCallback):
        payload = parse_job_input(job.job_type, job.input_data)
        return await self.build_video_notes(payload, report_progress, job.job_id)

    async def youtube_notes(self, job: JobRecord, report_progress: ProgressCallback):
        payload = parse_job_input(job.job_type, job.input_data)
        return await self.build_youtube_notes(payload, report_progress, job.job_id)

    async def build_notes(
        self,
        payload: JobInput,
        report_progress: ProgressCallback = _ignore_progress,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate notes for a validated payload outside of a claimed job."""
        builders = {
            JobType.TEXT_NOTES.value: self.build_text_notes,
            JobType.FILE_NOTES.value: self.build_file_notes,
            JobType.VIDEO_NOTES.value: self.build_video_notes,
            JobType.YOUTUBE_NOTES.value: self.build_youtube_notes,
        }
        return await builders[payload.job_type](payload, report_progress, job_id)

    async def build_text_notes(
        self,
        payload: TextNotesInput,
        report_progress: ProgressCallback = _ignore_progress,
        job_id: Optional[str] = None,
    ):
        await report_progress(10)

        try:
            notes = await self.generator.generate_notes(
                payload.content, options=payload.options.model_dump()
            )
        except Exception as e:
            raise HandlerFailure(f"Text notes generation failed: {e}", job_id) from e

        await report_progress(90)
        content = payload.content
        return _notes_output(
            notes,
            {
                "original_content": content[:500] + ("..." if len(content) > 500 else ""),
                "language": payload.options.language,
            },
        )

    async def build_file_notes(
        self,
        payload: FileNotesInput,
        report_progress: ProgressCallback = _ignore_progress,
        job_id: Optional[str] = None,
    ):
        await report_progress(10)

        try:
            text = await extract_text_from_file(
                payload.file_url, payload.file_type, payload.file_name
            )
            await report_progress(40)
            if not text or not text.strip():
                raise SourceError("No text could be extracted from the file")

            notes = await self.generator.generate_notes(
                text, title=payload.file_name, options=payload.options.model_dump()
            )
        except Exception as e:
            raise HandlerFailure(f"File notes generation failed: {e}", job_id) from e

        await report_progress(90)
        return _notes_output(
            notes,
            {
                "file_name": payload.file_name,
                "file_type": payload.file_type,
                "file_url": payload.file_url,
                "extracted_text_length": len(text),
                "language": payload.options.language,
            },
        )

    async def build_video_notes(
        self,
        payload: VideoNotesInput,
        report_progress: ProgressCallback = _ignore_progress,
        job_id: Optional[str] = None,
    ):
        await report_progress(10)

        if self.transcriber is None:
            raise HandlerFailure(
                "Video notes generation failed: no video transcriber is configured",
                job_id,
            )

        try:
            transcript = await self.transcriber.transcribe(payload.video_url)
            await report_progress(50)
            if not transcript or not transcript.strip():
                raise SourceError("No transcript could be extracted from the video")

            notes = await self.generator.generate_notes(
                transcript, options=payload.options.model_dump()
            )
        except Exception as e:
            raise HandlerFailure(f"Video notes generation failed: {e}", job_id) from e

        await report_progress(90)
        return _notes_output(
            notes,
            {
                "video_url": payload.video_url,
                "transcript_length": len(transcript),
                "language": payload.options.language,
            },
        )

    async def build_youtube_notes(
        self,
        payload: YouTubeNotesInput,
        report_progress: ProgressCallback = _ignore_progress,
        job_id: Optional[str] = None,
    ):
        await report_progress(10)

        try:
            transcript = await fetch_youtube_transcript(
                payload.video_id, payload.options.preferred_languages
            )
            await report_progress(40)

            options = payload.options.model_dump()
            if "language" not in payload.options.model_fields_set and transcript.language:
                options["language"] = transcript.language

            notes = await self.generator.generate_notes(
                transcript.text, options=options
            )
        except Exception as e:
            raise HandlerFailure(
                f"YouTube notes generation failed: {e}", job_id
            ) from e

        await report_progress(90)
        return _notes_output(
            notes,
            {
                "youtube_url": payload.youtube_url,
                "video_id": payload.video_id,
                "transcript_language": transcript.language,
                "transcript_length": len(transcript.text),
                "segments_count": transcript.segments_count,
                "language": options["language"],
            },
        )
