"""
Unit tests for the fallback cursor and the fallback-aware generation client.
"""

import asyncio

import pytest
from conftest import ScriptedGenerator

from src.integrations.gemini_fallback import FLASH_CHAIN, PRO_CHAIN, FallbackCursor, GenAIConfig, prefers_flash
from src.integrations.genai_client import (
    ChatMessage,
    ChatRequest,
    GenAIClient,
    GenerationFailedError,
)


def _request(model=None):
    return ChatRequest(messages=[ChatMessage("user", "こんにちは")], model=model)


async def _collect(stream):
    return [event async for event in stream]


class TestFallbackCursor:
    def test_walks_chain_in_order_then_exhausts(self):
        cursor = FallbackCursor(FLASH_CHAIN)
        seen = [cursor.next_config() for _ in range(len(FLASH_CHAIN))]
        assert seen == list(FLASH_CHAIN)
        assert cursor.exhausted
        assert cursor.next_config() is None
        assert cursor.attempt_count == len(FLASH_CHAIN)

    def test_reset(self):
        cursor = FallbackCursor(PRO_CHAIN)
        cursor.next_config()
        cursor.reset()
        assert cursor.next_config() == PRO_CHAIN[0]

    def test_chain_selection(self):
        assert prefers_flash("gemini-2.5-FLASH")
        assert not prefers_flash("gemini-2.5-pro")
        assert not prefers_flash(None)
        assert FallbackCursor.for_preference(True).candidates == FLASH_CHAIN
        assert FallbackCursor.for_preference().candidates == PRO_CHAIN

    def test_pro_chain_starts_with_preview_reasoning_model(self):
        first = PRO_CHAIN[0]
        assert first.is_preview
        assert first.location == "global"
        assert first.thinking_level == "HIGH"


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_first_candidate_success(self):
        generator = ScriptedGenerator(replies=["答え"])
        response = await GenAIClient(generator).send_message(_request())
        assert response.content == "答え"
        assert response.model == PRO_CHAIN[0].model
        assert response.attempts == 1
        assert response.usage.output_tokens == 34

    @pytest.mark.asyncio
    async def test_falls_back_after_failures(self):
        """Two failing candidates, third succeeds."""
        generator = ScriptedGenerator(replies=[RuntimeError("quota"), TimeoutError(), "ok"])
        response = await GenAIClient(generator).send_message(_request(model="flash"))
        assert response.content == "ok"
        assert response.attempts == 3
        assert [c for _, c in generator.calls] == list(FLASH_CHAIN)

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self):
        last = RuntimeError("region down")
        generator = ScriptedGenerator(replies=[RuntimeError("a"), RuntimeError("b"), last])
        with pytest.raises(GenerationFailedError) as exc_info:
            await GenAIClient(generator).send_message(_request(model="flash"))
        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is last

    @pytest.mark.asyncio
    async def test_failed_run_leaves_cursor_exhausted(self):
        candidates = (
            GenAIConfig("model-a", "global", is_preview=True),
            GenAIConfig("model-b", "asia-northeast1"),
            GenAIConfig("model-c", "us-central1"),
        )
        cursor = FallbackCursor(candidates)
        generator = ScriptedGenerator(replies=[RuntimeError("a"), RuntimeError("b"), RuntimeError("c")])

        with pytest.raises(GenerationFailedError):
            await GenAIClient(generator).send_message(_request(), cursor=cursor)

        assert [c for _, c in generator.calls] == list(candidates)
        assert cursor.next_config() is None
        assert cursor.exhausted
        assert cursor.attempt_count == 3

    @pytest.mark.asyncio
    async def test_empty_chain_fails_without_calls(self):
        generator = ScriptedGenerator(replies=["never"])
        cursor = FallbackCursor(())
        with pytest.raises(GenerationFailedError) as exc_info:
            await GenAIClient(generator).send_message(_request(), cursor=cursor)
        assert exc_info.value.last_error is None
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_empty_messages_rejected(self):
        with pytest.raises(ValueError):
            await GenAIClient(ScriptedGenerator()).send_message(ChatRequest(messages=[]))


class TestSendMessageStream:
    @pytest.mark.asyncio
    async def test_chunks_then_done(self):
        generator = ScriptedGenerator(streams=[["こん", "にちは"]])
        events = await _collect(GenAIClient(generator).send_message_stream(_request(model="flash")))
        assert [e.type for e in events] == ["chunk", "chunk", "done"]
        assert "".join(e.text for e in events) == "こんにちは"
        done = events[-1].to_dict()
        assert done["model"] == FLASH_CHAIN[0].model
        assert done["usage"] == {"input_tokens": 5, "output_tokens": 2}
        assert generator.closed_streams == 1

    @pytest.mark.asyncio
    async def test_failure_before_first_chunk_falls_back(self):
        generator = ScriptedGenerator(streams=[[RuntimeError("503")], ["ok"]])
        events = await _collect(GenAIClient(generator).send_message_stream(_request(model="flash")))
        assert [e.type for e in events] == ["chunk", "done"]
        assert events[-1].model == FLASH_CHAIN[1].model
        assert generator.closed_streams == 2

    @pytest.mark.asyncio
    async def test_failure_after_first_chunk_propagates(self):
        """Partial output stands; no retry once text has been emitted."""
        generator = ScriptedGenerator(streams=[["部分", RuntimeError("reset")], ["unused"]])
        received = []
        with pytest.raises(RuntimeError, match="reset"):
            async for event in GenAIClient(generator).send_message_stream(_request(model="flash")):
                received.append(event)
        assert [e.text for e in received] == ["部分"]
        assert len(generator.stream_calls) == 1

    @pytest.mark.asyncio
    async def test_all_candidates_fail(self):
        generator = ScriptedGenerator()
        with pytest.raises(GenerationFailedError):
            await _collect(GenAIClient(generator).send_message_stream(_request(model="flash")))
        assert len(generator.stream_calls) == len(FLASH_CHAIN)

    @pytest.mark.asyncio
    async def test_cancel_event_stops_and_closes_upstream(self):
        generator = ScriptedGenerator(streams=[["a", "b", "c"]])
        cancel = asyncio.Event()
        received = []
        async for event in GenAIClient(generator).send_message_stream(_request(), cancel_event=cancel):
            received.append(event)
            cancel.set()
        assert [e.type for e in received] == ["chunk"]
        assert generator.closed_streams == 1

    @pytest.mark.asyncio
    async def test_closing_consumer_closes_upstream(self):
        generator = ScriptedGenerator(streams=[["a", "b"]])
        stream = GenAIClient(generator).send_message_stream(_request())
        first = await stream.__anext__()
        assert first.text == "a"
        await stream.aclose()
        assert generator.closed_streams == 1

    @pytest.mark.asyncio
    async def test_empty_messages_rejected(self):
        with pytest.raises(ValueError):
            await _collect(GenAIClient(ScriptedGenerator()).send_message_stream(ChatRequest(messages=[])))
