"""LLM config schema.

Upstream chat-completion settings: credentials, default sampling values,
the system instruction prepended to every context window and the apology
text persisted when the upstream call fails.

No side effects / globals.
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator, ConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful and friendly assistant. "
    "Answer clearly and concisely."
)
DEFAULT_ERROR_REPLY = (
    "Sorry, an error occurred while processing your message. "
    "Please try again."
)


class LLMConfig(BaseModel):
    api_key: str | None = None
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_output_tokens: int = 1000
    # Client-level request timeout for the upstream API
    timeout_s: float = 30.0
    # Whitelist applied to per-request model overrides
    allowed_models: List[str] = Field(
        default_factory=lambda: ["gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo"]
    )
    # Upper bound for per-request max token overrides
    max_tokens_limit: int = 4000
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    # Number of stored messages sent as context (system prompt excluded)
    context_window: int = 10
    error_reply: str = DEFAULT_ERROR_REPLY

    model_config = ConfigDict(extra="forbid")

    @field_validator("temperature")
    @classmethod
    def _temp_range(cls, v: float) -> float:  # noqa: D401
        if not (0 <= v <= 2):
            raise ValueError("temperature out of range 0..2")
        return v

    @field_validator("context_window")
    @classmethod
    def _window_positive(cls, v: int) -> int:  # noqa: D401
        if v <= 0:
            raise ValueError("context_window must be >0")
        return v

    @field_validator("timeout_s")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:  # noqa: D401
        if v <= 0:
            raise ValueError("timeout_s must be >0")
        return v
