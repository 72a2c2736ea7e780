"""
Gemini fallback chains.

Two fixed, ordered candidate lists of (model, region) pairs. A request picks
one chain up front and walks it with a FallbackCursor until a candidate
succeeds or the chain runs out.

Chains:
- PRO_CHAIN (default, reasoning-heavy): preview reasoning model at global
  with HIGH thinking, preview fast model at global, then stable pro in
  three regions
- FLASH_CHAIN: preview fast model at global, then stable flash in two regions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class GenAIConfig:
    """One generation candidate."""

    model: str
    location: str
    is_preview: bool = False  # preview models are served from the global endpoint
    thinking_level: str | None = None  # "LOW" | "HIGH"

    def describe(self) -> str:
        return f"{self.model} @ {self.location}"


PRO_CHAIN: tuple[GenAIConfig, ...] = (
    GenAIConfig("gemini-3-pro-preview", "global", is_preview=True, thinking_level="HIGH"),
    GenAIConfig("gemini-3-flash-preview", "global", is_preview=True),
    GenAIConfig("gemini-2.5-pro", "asia-northeast1"),
    GenAIConfig("gemini-2.5-pro", "us-central1"),
    GenAIConfig("gemini-2.5-pro", "us-east4"),
)

FLASH_CHAIN: tuple[GenAIConfig, ...] = (
    GenAIConfig("gemini-3-flash-preview", "global", is_preview=True),
    GenAIConfig("gemini-2.5-flash", "asia-northeast1"),
    GenAIConfig("gemini-2.5-flash", "us-central1"),
)


def prefers_flash(model_hint: str | None) -> bool:
    """A request asks for the fast chain when its model hint mentions flash."""
    return bool(model_hint) and "flash" in model_hint.lower()


@dataclass
class FallbackCursor:
    """
    Position in an immutable candidate chain.

    One cursor per logical request; reset() only between independent
    requests, never mid-request.
    """

    candidates: tuple[GenAIConfig, ...]
    index: int = field(default=0)

    @classmethod
    def for_preference(cls, prefer_flash: bool = False) -> FallbackCursor:
        return cls(FLASH_CHAIN if prefer_flash else PRO_CHAIN)

    def next_config(self) -> GenAIConfig | None:
        """Next untried candidate, or None once the chain is exhausted."""
        if self.index >= len(self.candidates):
            return None
        config = self.candidates[self.index]
        self.index += 1
        return config

    @property
    def attempt_count(self) -> int:
        """Candidates handed out so far (1-based for logging)."""
        return self.index

    @property
    def exhausted(self) -> bool:
        return self.index >= len(self.candidates)

    def reset(self) -> None:
        self.index = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "candidates": [c.describe() for c in self.candidates],
        }
