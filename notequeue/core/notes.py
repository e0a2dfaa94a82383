"""
AI note generation.

The queue treats this as an opaque, slow, fallible call. LiteLLMNoteGenerator
splits long input into word chunks, writes notes for each chunk concurrently,
then asks for a summary (and optionally a quiz) over the combined notes.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import json_repair
from litellm import RateLimitError, acompletion
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    stop_after_delay,
    wait_exponential_jitter,
)

from notequeue.config import settings
from notequeue.core.errors import NoteGenerationError

logger = logging.getLogger(__name__)

CHUNK_WORDS = 2500

PROVIDER_API_KEY_SETTINGS = {
    "openai": "openai_api_key",
    "anthropic": "anthropic_api_key",
    "gemini": "gemini_api_key",
}

NOTES_SYSTEM_PROMPT = """You are a study assistant that turns raw material into clear,
well-structured study notes. Write in Markdown with headings, bullet points and
short explanations. Keep every fact from the source; do not invent content.
Write the notes in the language with code: {language}."""

SUMMARY_SYSTEM_PROMPT = """You condense study notes. Respond with a JSON object:
{{"summary": "<5-8 sentence summary>", "quiz": [{{"question": "...", "options": ["..."], "answer": "..."}}]}}
Return an empty quiz list unless a quiz is requested. Use the language with code: {language}."""


class QuizQuestion(BaseModel):
    question: str
    options: List[str] = Field(default_factory=list)
    answer: str = ""


class GeneratedNotes(BaseModel):
    content: str
    summary: str = ""
    quiz: List[QuizQuestion] = Field(default_factory=list)
    title: Optional[str] = None
    partial_success: bool = False


class NoteGenerator(Protocol):
    async def generate_notes(
        self, text: str, title: Optional[str] = None, options: Optional[Dict[str, Any]] = None
    ) -> GeneratedNotes: ...


def split_into_chunks(text: str, chunk_words: int = CHUNK_WORDS) -> List[str]:
    words = text.split()
    return [
        " ".join(words[i : i + chunk_words]) for i in range(0, len(words), chunk_words)
    ]


def api_key_for_model(model: str) -> Optional[str]:
    """Configured key for the model's provider prefix; bare names are OpenAI."""
    provider = model.split("/", 1)[0] if "/" in model else "openai"
    key_setting = PROVIDER_API_KEY_SETTINGS.get(provider)
    if key_setting is None:
        return None
    return getattr(settings, key_setting) or None


def _should_retry_llm_call(retry_state: RetryCallState) -> bool:
    """Keep retrying rate limits until the deadline; other errors get one retry."""
    exc = retry_state.outcome.exception()
    if exc is None:
        return False
    if isinstance(exc, RateLimitError):
        return True
    return retry_state.attempt_number < 2


class LiteLLMNoteGenerator:
    def __init__(
        self,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        chunk_words: int = CHUNK_WORDS,
        api_key: Optional[str] = None,
    ):
        self.model = model or settings.notes_model
        self.api_key = api_key or api_key_for_model(self.model)
        self.max_tokens = max_tokens or settings.notes_max_tokens
        self.chunk_words = chunk_words

    @retry(
        retry=_should_retry_llm_call,
        wait=wait_exponential_jitter(initial=1, max=60, jitter=5),
        stop=stop_after_delay(300),
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    async def _complete(self, system_prompt: str, user_text: str, json_mode: bool = False) -> str:
        completion_kwargs: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            "max_tokens": self.max_tokens,
        }
        if self.api_key:
            completion_kwargs["api_key"] = self.api_key
        if json_mode:
            completion_kwargs["response_format"] = {"type": "json_object"}

        response = await acompletion(**completion_kwargs)
        content = response.choices[0].message.content
        if not content:
            raise NoteGenerationError("No content received from LLM")
        return content.strip()

    async def generate_notes(
        self, text: str, title: Optional[str] = None, options: Optional[Dict[str, Any]] = None
    ) -> GeneratedNotes:
        options = options or {}
        language = options.get("language") or "en"

        if not text or not text.strip():
            raise NoteGenerationError("Empty or invalid text provided")

        chunks = split_into_chunks(text, self.chunk_words)
        logger.info(f"Generating notes for {len(text)} chars in {len(chunks)} chunks")

        system_prompt = NOTES_SYSTEM_PROMPT.format(language=language)
        if options.get("custom_prompt"):
            system_prompt += f"\n\nAdditional instructions: {options['custom_prompt']}"

        results = await asyncio.gather(
            *(self._complete(system_prompt, chunk) for chunk in chunks),
            return_exceptions=True,
        )
        failed = [r for r in results if isinstance(r, BaseException)]
        notes = [r for r in results if isinstance(r, str) and r]

        if not notes:
            first = failed[0] if failed else "no content"
            raise NoteGenerationError(
                f"All {len(chunks)} chunks failed to process. First error: {first}"
            )
        if failed:
            logger.warning(f"{len(failed)} of {len(chunks)} note chunks failed")

        content = "\n\n---\n\n".join(notes)

        summary = ""
        quiz: List[QuizQuestion] = []
        try:
            request = content
            if options.get("generate_quiz"):
                request += "\n\nInclude a quiz of 5 multiple choice questions."
            raw = await self._complete(
                SUMMARY_SYSTEM_PROMPT.format(language=language), request, json_mode=True
            )
            parsed = try_json_parsing(raw)
            summary = str(parsed.get("summary", ""))
            quiz = [QuizQuestion.model_validate(q) for q in parsed.get("quiz") or []]
        except Exception as e:
            # Notes are the product; summary and quiz are best effort
            logger.warning(f"Summary generation failed: {e}")

        return GeneratedNotes(
            content=content,
            summary=summary,
            quiz=quiz,
            title=title,
            partial_success=bool(failed),
        )


def try_json_parsing(json_data: str):
    res = json_repair.loads(json_data)
    if not res or not isinstance(res, dict):
        raise ValueError(f"Failed to parse JSON: {json_data}")
    return res
