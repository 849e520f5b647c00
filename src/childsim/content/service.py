"""
Content generation service.

``ContentService`` is the contract the session controller depends on.
``LLMContentService`` implements it over any ``LLMClient``: blocking
backend calls run in a worker thread, and streamed text is handed back
to the event loop so ``on_progress`` always runs on the loop.
"""

import asyncio
import logging
import string
import threading
from typing import Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from ..llm.base import LLMClient, LLMError, Message
from ..state.schema import (
    InitialScenario,
    OutcomeResult,
    Question,
    SessionSnapshot,
)
from ..streaming.assembler import clean_json_content, parse_document
from ..streaming.formatters import format_ending
from . import prompts


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class ContentGenerationError(Exception):
    """The content service could not produce a result."""


class MalformedDocumentError(ContentGenerationError):
    """The generated text was not a usable JSON document."""


@runtime_checkable
class ContentService(Protocol):
    """
    Source of generated game content.

    Streaming variants call ``on_progress`` with the accumulated raw
    text zero or more times before returning the parsed result.
    """

    async def generate_initial_state(
        self,
        special_requirements: str | None = None,
        preloaded: dict | None = None,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> InitialScenario:
        ...

    async def generate_question(
        self,
        snapshot: SessionSnapshot,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> Question:
        ...

    async def generate_outcome_and_next_question(
        self,
        snapshot: SessionSnapshot,
        question: str,
        choice: str,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> OutcomeResult:
        ...

    async def generate_ending(
        self,
        snapshot: SessionSnapshot,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        ...


# -----------------------------------------------------------------------------
# Parsing helpers
# -----------------------------------------------------------------------------

def parse_json_document(text: str) -> dict:
    """Parse generated text into a JSON object or raise MalformedDocumentError."""
    doc = parse_document(text)
    if doc is None:
        raise MalformedDocumentError(f"Malformed JSON document: {clean_json_content(text)[:120]!r}")
    return doc


def _validate(model: type[BaseModel], data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedDocumentError(f"Malformed {model.__name__} document: {e}") from e


def _fill_option_ids(question: dict) -> dict:
    options = question.get("options")
    if isinstance(options, list):
        for letter, option in zip(string.ascii_uppercase, options):
            if isinstance(option, dict) and not option.get("id"):
                option["id"] = letter
    return question


def parse_question(doc: dict) -> Question:
    question = _validate(Question, _fill_option_ids(doc))
    if not question.options:
        raise MalformedDocumentError("Malformed question document: no options")
    return question


def parse_outcome(doc: dict) -> OutcomeResult:
    """
    Parse an outcome document.

    A lookahead question that is missing or unusable is dropped rather
    than failing the outcome; the next question is then fetched normally.
    """
    next_doc = doc.get("nextQuestion")
    doc = {k: v for k, v in doc.items() if k != "nextQuestion"}
    result = _validate(OutcomeResult, doc)
    if isinstance(next_doc, dict):
        try:
            result.next_question = parse_question(next_doc)
        except MalformedDocumentError as e:
            logger.info("Ignoring unusable lookahead question: %s", e)
    return result


# -----------------------------------------------------------------------------
# LLM-backed implementation
# -----------------------------------------------------------------------------

class LLMContentService:
    """
    ContentService backed by an LLM client.

    Backend errors of any kind surface as ContentGenerationError;
    unparseable output surfaces as MalformedDocumentError.
    """

    def __init__(
        self,
        client: LLMClient,
        temperature: float = 0.8,
        max_tokens: int = 2048,
    ):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def _complete(
        self,
        prompt: str,
        streaming: bool,
        on_progress: ProgressCallback | None,
    ) -> str:
        messages = [Message(role="user", content=prompt)]
        try:
            if streaming and self.client.supports_streaming:
                return await self._stream(messages, on_progress)
            response = await asyncio.to_thread(
                self.client.chat,
                messages,
                system=prompts.SYSTEM_PROMPT,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            return response.content
        except LLMError as e:
            raise ContentGenerationError(f"Content generation failed: {e}") from e
        except (OSError, TimeoutError) as e:
            raise ContentGenerationError(f"Content generation failed, network error: {e}") from e

    async def _stream(
        self,
        messages: list[Message],
        on_progress: ProgressCallback | None,
    ) -> str:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        _DONE = object()
        # set once the reader is done; the pump stops pulling from the backend
        stop = threading.Event()

        def pump() -> None:
            try:
                for delta in self.client.stream_chat(
                    messages,
                    system=prompts.SYSTEM_PROMPT,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ):
                    if stop.is_set():
                        logger.debug("Stream reader stopped, abandoning backend stream")
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, delta)
            except Exception as e:
                loop.call_soon_threadsafe(queue.put_nowait, e)
            else:
                loop.call_soon_threadsafe(queue.put_nowait, _DONE)

        worker = asyncio.ensure_future(asyncio.to_thread(pump))
        accumulated = ""
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, BaseException):
                    raise item
                accumulated += item
                if on_progress is not None:
                    on_progress(accumulated)
        finally:
            stop.set()
            await worker
        return accumulated

    async def generate_initial_state(
        self,
        special_requirements: str | None = None,
        preloaded: dict | None = None,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> InitialScenario:
        if preloaded is not None:
            logger.info("Using preloaded initial state")
            return _validate(InitialScenario, preloaded)

        text = await self._complete(
            prompts.initial_state_prompt(special_requirements), streaming, on_progress,
        )
        return _validate(InitialScenario, parse_json_document(text))

    async def generate_question(
        self,
        snapshot: SessionSnapshot,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> Question:
        text = await self._complete(prompts.question_prompt(snapshot), streaming, on_progress)
        return parse_question(parse_json_document(text))

    async def generate_outcome_and_next_question(
        self,
        snapshot: SessionSnapshot,
        question: str,
        choice: str,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> OutcomeResult:
        text = await self._complete(
            prompts.outcome_prompt(snapshot, question, choice), streaming, on_progress,
        )
        result = parse_outcome(parse_json_document(text))
        if not prompts.wants_next_question(snapshot):
            result.next_question = None
            result.is_ending = True
        return result

    async def generate_ending(
        self,
        snapshot: SessionSnapshot,
        *,
        streaming: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        text = await self._complete(prompts.ending_prompt(snapshot), streaming, on_progress)
        doc = parse_document(text)
        summary = format_ending(doc) if doc else ""
        if summary:
            return summary
        plain = clean_json_content(text)
        if not plain or "{" in plain:
            raise MalformedDocumentError(f"Malformed ending document: {plain[:120]!r}")
        return plain
