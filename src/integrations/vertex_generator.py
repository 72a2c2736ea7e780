"""
Vertex AI content generator.

The ContentGenerator backend used in production. Talks to Gemini on Vertex
AI through the google-genai SDK, one client per location (preview models
live on the `global` endpoint, stable ones in regional endpoints).

Authentication:
- service account key file (GOOGLE_APPLICATION_CREDENTIALS) when present
- Application Default Credentials otherwise
"""

from __future__ import annotations

import base64
import os
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types
from google.oauth2 import service_account
from loguru import logger

from src.integrations.gemini_fallback import GenAIConfig
from src.integrations.genai_client import (
    ChatMessage,
    ChatRequest,
    GenerationResult,
    StreamPiece,
    TokenUsage,
)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


# =============================================================================
# REQUEST CONVERSION
# =============================================================================


def _to_parts(content: str | list[dict[str, Any]]) -> list[types.Part]:
    if isinstance(content, str):
        return [types.Part.from_text(text=content)]

    parts: list[types.Part] = []
    for block in content:
        if block.get("type") == "text":
            parts.append(types.Part.from_text(text=block.get("text", "")))
        elif block.get("type") == "image":
            source = block.get("source") or {}
            parts.append(
                types.Part.from_bytes(
                    data=base64.b64decode(source.get("data", "")),
                    mime_type=source.get("media_type", "image/png"),
                )
            )
    return parts


def build_contents(messages: list[ChatMessage]) -> list[types.Content]:
    """Role/content messages to SDK contents (assistant -> model)."""
    return [
        types.Content(role="model" if m.role == "assistant" else "user", parts=_to_parts(m.content))
        for m in messages
    ]


def build_config(request: ChatRequest, candidate: GenAIConfig) -> types.GenerateContentConfig:
    thinking: types.ThinkingConfig | None = None
    if request.thinking is False:
        thinking = types.ThinkingConfig(thinking_budget=0)
    elif candidate.thinking_level:
        thinking = types.ThinkingConfig(thinking_level=candidate.thinking_level)

    return types.GenerateContentConfig(
        system_instruction=request.system,
        max_output_tokens=request.max_tokens,
        thinking_config=thinking,
    )


def extract_text(response: Any) -> str:
    """Concatenate non-thought text parts of the first candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return ""
    return "".join(
        part.text for part in (candidates[0].content.parts or []) if part.text and not part.thought
    )


def extract_usage(response: Any) -> TokenUsage | None:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return None
    return TokenUsage(
        input_tokens=usage.prompt_token_count or 0,
        output_tokens=usage.candidates_token_count or 0,
    )


# =============================================================================
# GENERATOR
# =============================================================================


class VertexContentGenerator:
    """
    Gemini-on-Vertex backend with a per-location client cache.

    Example:
        generator = VertexContentGenerator(project_id="my-project")
        client = GenAIClient(generator)
    """

    def __init__(self, project_id: str, credentials_path: str | None = None):
        self.project_id = project_id
        self.credentials_path = credentials_path
        self._credentials: Any = None
        self._clients: dict[str, genai.Client] = {}

    def _load_credentials(self) -> Any:
        if self._credentials is None and self.credentials_path and os.path.exists(self.credentials_path):
            self._credentials = service_account.Credentials.from_service_account_file(
                self.credentials_path, scopes=[CLOUD_PLATFORM_SCOPE]
            )
            logger.info(f"Using service account credentials from {self.credentials_path}")
        return self._credentials

    def client_for(self, location: str) -> genai.Client:
        client = self._clients.get(location)
        if client is None:
            logger.debug(f"Creating Vertex AI client for {location}")
            client = genai.Client(
                vertexai=True,
                project=self.project_id,
                location=location,
                credentials=self._load_credentials(),
            )
            self._clients[location] = client
        return client

    async def generate(self, request: ChatRequest, candidate: GenAIConfig) -> GenerationResult:
        response = await self.client_for(candidate.location).aio.models.generate_content(
            model=candidate.model,
            contents=build_contents(request.messages),
            config=build_config(request, candidate),
        )
        return GenerationResult(text=extract_text(response), usage=extract_usage(response) or TokenUsage())

    async def generate_stream(
        self, request: ChatRequest, candidate: GenAIConfig
    ) -> AsyncIterator[StreamPiece]:
        stream = await self.client_for(candidate.location).aio.models.generate_content_stream(
            model=candidate.model,
            contents=build_contents(request.messages),
            config=build_config(request, candidate),
        )
        async for chunk in stream:
            yield StreamPiece(text=extract_text(chunk), usage=extract_usage(chunk))
