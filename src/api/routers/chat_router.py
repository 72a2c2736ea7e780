"""
Chat router.

Streams a model reply through the fallback client as server-sent events:
`chunk` events, then one `done` event (or one `error` event). When the
client goes away the upstream model stream is closed.
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field

from config import get_settings
from src.api.dependencies import Services, UserId
from src.integrations.genai_client import ChatMessage, ChatRequest

router = APIRouter()


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str | list[dict[str, Any]]


class ChatStreamRequest(BaseModel):
    messages: list[ChatMessageModel]
    system: str | None = None
    max_tokens: int | None = Field(None, ge=1)
    model: str | None = Field(None, description='"flash" selects the fast chain')


@router.post("/stream")
async def stream_chat(
    body: ChatStreamRequest, request: Request, services: Services, user_id: UserId
) -> StreamingResponse:
    if not body.messages:
        raise HTTPException(status_code=400, detail="Messages array is empty")

    chat_request = ChatRequest(
        messages=[ChatMessage(m.role, m.content) for m in body.messages],
        system=body.system,
        max_tokens=body.max_tokens or get_settings().genai_default_max_tokens,
        model=body.model,
    )

    async def events() -> AsyncIterator[str]:
        cancel = asyncio.Event()
        stream = services.client.send_message_stream(chat_request, cancel_event=cancel)
        try:
            async for event in stream:
                if await request.is_disconnected():
                    logger.info(f"[STREAM] Client disconnected (user={user_id})")
                    cancel.set()
                    break
                yield f"event: {event.type}\ndata: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"
        except Exception as e:  # surfaced to the client as an error event
            logger.exception(f"[STREAM] Chat stream failed: {e}")
            yield f"event: error\ndata: {json.dumps({'message': str(e)}, ensure_ascii=False)}\n\n"
        finally:
            await stream.aclose()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
