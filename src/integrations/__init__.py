"""
Generative-AI integration.

Modules:
- gemini_fallback: ordered (model, region) candidate chains and the cursor over them
- genai_client: fallback-aware send_message / send_message_stream
- vertex_generator: google-genai backend for Gemini on Vertex AI
"""
from .gemini_fallback import FLASH_CHAIN, PRO_CHAIN, FallbackCursor, GenAIConfig
from .genai_client import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ContentGenerator,
    GenAIClient,
    GenerationFailedError,
    GenerationResult,
    StreamEvent,
    StreamPiece,
    TokenUsage,
)

__all__ = [
    "FLASH_CHAIN",
    "PRO_CHAIN",
    "FallbackCursor",
    "GenAIConfig",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ContentGenerator",
    "GenAIClient",
    "GenerationFailedError",
    "GenerationResult",
    "StreamEvent",
    "StreamPiece",
    "TokenUsage",
]
