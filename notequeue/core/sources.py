"""
Content sources for note generation: downloaded files and YouTube transcripts.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

import httpx
import pymupdf
from pydantic import BaseModel
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi
from youtube_transcript_api.formatters import TextFormatter

from notequeue.core.errors import SourceError

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 60.0
MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024

PDF_TYPES = {"pdf", "application/pdf"}
TEXT_TYPES = {
    "txt",
    "md",
    "markdown",
    "text/plain",
    "text/markdown",
}


class Transcript(BaseModel):
    text: str
    language: Optional[str] = None
    segments_count: int = 0


class VideoTranscriber(Protocol):
    async def transcribe(self, video_url: str) -> str: ...


async def download_file(url: str, timeout: float = DOWNLOAD_TIMEOUT_SECONDS) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise SourceError(f"Failed to download {url}: {e}") from e

    if len(response.content) > MAX_DOWNLOAD_BYTES:
        raise SourceError(f"File at {url} exceeds {MAX_DOWNLOAD_BYTES} bytes")
    return response.content


def extract_text_from_txt(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="ignore")


def extract_text_from_pdf(data: bytes) -> str:
    """
    Extract text from a PDF file.

    Args:
        data: Raw bytes from the PDF file

    Returns:
        Extracted text from all pages joined with newlines
    """
    try:
        doc = pymupdf.open(stream=data, filetype="pdf")
    except Exception as e:
        raise SourceError(f"Could not open PDF: {e}") from e

    pages_text = []
    with doc:
        for page in doc:
            try:
                pages_text.append(page.get_text())
            except Exception:
                logger.exception("Error extracting text from PDF page")
    return "\n".join(pages_text)


def extract_text(data: bytes, file_type: str, file_name: str = "") -> str:
    kind = (file_type or "").lower()
    if not kind and "." in file_name:
        kind = file_name.rsplit(".", 1)[-1].lower()

    if kind in PDF_TYPES or file_name.lower().endswith(".pdf"):
        return extract_text_from_pdf(data)
    if kind in TEXT_TYPES or kind.startswith("text/"):
        return extract_text_from_txt(data)
    raise SourceError(f"Unsupported file type: {file_type or file_name}")


async def extract_text_from_file(file_url: str, file_type: str, file_name: str = "") -> str:
    data = await download_file(file_url)
    # pymupdf is blocking
    return await asyncio.to_thread(extract_text, data, file_type, file_name)


def _fetch_transcript(video_id: str, languages: List[str]) -> Transcript:
    fetched = YouTubeTranscriptApi().fetch(video_id, languages=languages)
    text = TextFormatter().format_transcript(fetched).strip()
    return Transcript(
        text=text,
        language=getattr(fetched, "language_code", None),
        segments_count=len(fetched),
    )


async def fetch_youtube_transcript(video_id: str, languages: List[str]) -> Transcript:
    try:
        transcript = await asyncio.to_thread(_fetch_transcript, video_id, languages)
    except CouldNotRetrieveTranscript as e:
        raise SourceError(f"Failed to extract YouTube transcript: {e}") from e

    if not transcript.text:
        raise SourceError(f"Transcript for {video_id} is empty")
    return transcript
