"""LLM shared request/result types."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True, slots=True)
class ChatTurn:
    role: str  # system|user|assistant
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    """Per-request generation overrides; ``None`` means "use default"."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def resolve(self, defaults: "GenerationOptions") -> "GenerationOptions":
        return GenerationOptions(
            model=self.model if self.model is not None else defaults.model,
            temperature=(
                self.temperature
                if self.temperature is not None
                else defaults.temperature
            ),
            max_tokens=(
                self.max_tokens
                if self.max_tokens is not None
                else defaults.max_tokens
            ),
        )


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass(slots=True)
class CompletionResult:
    text: str
    model: str
    latency_ms: int
    usage: TokenUsage
    finish_reason: str | None = None
