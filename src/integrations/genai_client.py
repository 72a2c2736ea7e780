"""
Generation client with model/region fallback.

Wraps a ContentGenerator (the backend that actually talks to a model) in the
retry loop: pull the next candidate from a FallbackCursor, try it, and move
on after any failure. Success returns immediately; exhaustion raises
GenerationFailedError carrying the last underlying error.

Streaming follows the same loop, but only until the first chunk reaches the
caller. After that a failure propagates and the partial text already
emitted stands.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from src.integrations.gemini_fallback import FallbackCursor, GenAIConfig, prefers_flash

DEFAULT_MAX_TOKENS = 16384


class GenerationFailedError(RuntimeError):
    """Every candidate in the fallback chain failed (or none was available)."""

    def __init__(self, message: str, last_error: BaseException | None = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


# ========================================
# Request / response types
# ========================================


@dataclass
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str | list[dict[str, Any]]


@dataclass
class ChatRequest:
    messages: list[ChatMessage]
    system: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    model: str | None = None  # hint; "flash" selects the fast chain
    thinking: bool | None = None  # False disables thinking explicitly


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class GenerationResult:
    """What a ContentGenerator returns for one candidate."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class StreamPiece:
    """One upstream streaming increment."""

    text: str = ""
    usage: TokenUsage | None = None


@dataclass
class ChatResponse:
    content: str
    model: str
    usage: TokenUsage
    attempts: int = 1


@dataclass
class StreamEvent:
    type: str  # "chunk" | "done"
    text: str = ""
    model: str | None = None
    usage: TokenUsage | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.type == "chunk":
            return {"type": "chunk", "text": self.text}
        usage = self.usage or TokenUsage()
        return {
            "type": "done",
            "model": self.model,
            "usage": {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens},
        }


class ContentGenerator(Protocol):
    """Backend for a single candidate. Either call may raise on failure."""

    async def generate(self, request: ChatRequest, candidate: GenAIConfig) -> GenerationResult: ...

    def generate_stream(self, request: ChatRequest, candidate: GenAIConfig) -> AsyncIterator[StreamPiece]: ...


# ========================================
# Client
# ========================================


def _thinking_note(request: ChatRequest, candidate: GenAIConfig) -> str:
    if request.thinking is False:
        return " thinking=OFF"
    if candidate.thinking_level:
        return f" thinking={candidate.thinking_level}"
    return ""


async def _close(stream: AsyncIterator[StreamPiece]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class GenAIClient:
    """
    Fallback-aware front door for all model calls.

    Example:
        client = GenAIClient(VertexContentGenerator(project_id="my-project"))
        reply = await client.send_message(ChatRequest(messages=[ChatMessage("user", "hi")]))
    """

    def __init__(self, generator: ContentGenerator):
        self._generator = generator

    @staticmethod
    def _validate(request: ChatRequest) -> None:
        if not request.messages:
            raise ValueError("Messages array is empty")

    async def send_message(
        self, request: ChatRequest, cursor: FallbackCursor | None = None
    ) -> ChatResponse:
        """
        Generate a complete reply, falling back across candidates.

        Args:
            request: Messages and generation options
            cursor: Candidate chain; chosen from request.model when None

        Returns:
            Reply from the first candidate that succeeded

        Raises:
            ValueError: empty message list
            GenerationFailedError: every candidate failed
        """
        self._validate(request)
        cursor = cursor or FallbackCursor.for_preference(prefers_flash(request.model))
        last_error: BaseException | None = None

        candidate = cursor.next_config()
        while candidate is not None:
            note = _thinking_note(request, candidate)
            logger.debug(f"Sending request (attempt {cursor.attempt_count}: {candidate.describe()}{note})")
            start = time.perf_counter()
            try:
                result = await self._generator.generate(request, candidate)
            except Exception as e:  # any candidate failure moves on to the next one
                last_error = e
                logger.warning(f"Failed attempt {cursor.attempt_count} ({candidate.describe()}): {e}")
                candidate = cursor.next_config()
                if candidate is not None:
                    logger.info(f"Retrying with next configuration: {candidate.describe()}")
                continue

            elapsed_ms = round((time.perf_counter() - start) * 1000)
            logger.info(
                f"[CHAT] model={candidate.model} ms={elapsed_ms} "
                f"tokens_in={result.usage.input_tokens} tokens_out={result.usage.output_tokens}{note}"
            )
            return ChatResponse(
                content=result.text,
                model=candidate.model,
                usage=result.usage,
                attempts=cursor.attempt_count,
            )

        logger.error("All fallback attempts failed.")
        raise self._exhausted(last_error, cursor)

    async def send_message_stream(
        self,
        request: ChatRequest,
        cursor: FallbackCursor | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a reply as `chunk` events followed by one `done` event.

        Fallback applies only before the first chunk is yielded. Setting
        `cancel_event` (or closing this generator) stops consumption and
        closes the upstream stream.

        Raises:
            ValueError: empty message list
            GenerationFailedError: every candidate failed before streaming began
        """
        self._validate(request)
        cursor = cursor or FallbackCursor.for_preference(prefers_flash(request.model))
        last_error: BaseException | None = None

        candidate = cursor.next_config()
        while candidate is not None:
            note = _thinking_note(request, candidate)
            logger.debug(f"[STREAM] Attempt {cursor.attempt_count}: {candidate.describe()}{note}")
            start = time.perf_counter()
            usage = TokenUsage()
            started = False
            stream = self._generator.generate_stream(request, candidate)
            try:
                async for piece in stream:
                    if cancel_event is not None and cancel_event.is_set():
                        logger.info(f"[STREAM] Cancelled by caller after {'some' if started else 'no'} output")
                        return
                    if piece.usage is not None:
                        usage = piece.usage
                    if piece.text:
                        started = True
                        yield StreamEvent(type="chunk", text=piece.text)
            except Exception as e:
                if started:
                    logger.error(f"[STREAM] Failed mid-stream ({candidate.describe()}): {e}")
                    raise
                last_error = e
                logger.warning(f"[STREAM] Failed attempt {cursor.attempt_count} ({candidate.describe()}): {e}")
                candidate = cursor.next_config()
                if candidate is not None:
                    logger.info(f"[STREAM] Retrying with next configuration: {candidate.describe()}")
                continue
            finally:
                await _close(stream)

            elapsed_ms = round((time.perf_counter() - start) * 1000)
            logger.info(
                f"[STREAM] model={candidate.model} ms={elapsed_ms} "
                f"tokens_in={usage.input_tokens} tokens_out={usage.output_tokens}{note}"
            )
            yield StreamEvent(type="done", model=candidate.model, usage=usage)
            return

        logger.error("[STREAM] All fallback attempts failed.")
        raise self._exhausted(last_error, cursor)

    @staticmethod
    def _exhausted(last_error: BaseException | None, cursor: FallbackCursor) -> GenerationFailedError:
        if last_error is None:
            return GenerationFailedError("All Vertex AI attempts failed", attempts=cursor.attempt_count)
        error = GenerationFailedError(
            f"All generation attempts failed: {last_error}",
            last_error=last_error,
            attempts=cursor.attempt_count,
        )
        error.__cause__ = last_error
        return error
