"""OpenAI chat-completions provider.

Single non-streaming request per call; no retries. The client is built on
first use; without an API key ``is_available()`` reports False.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Sequence

from openai import APITimeoutError, AsyncOpenAI, OpenAIError

from core import metrics
from core.config.schemas.llm import LLMConfig

from .exceptions import EmptyCompletionError, UpstreamError, UpstreamTimeoutError
from .provider import ChatProvider
from .types import ChatTurn, CompletionResult, GenerationOptions, TokenUsage

logger = logging.getLogger(__name__)

ClientFactory = Callable[[LLMConfig], Any]


def _default_client_factory(cfg: LLMConfig) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=cfg.api_key,
        base_url=cfg.base_url,
        timeout=cfg.timeout_s,
        max_retries=0,
    )


class OpenAIChatProvider(ChatProvider):
    def __init__(
        self,
        cfg: LLMConfig,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._cfg = cfg
        self._factory = client_factory or _default_client_factory
        self._client: Any | None = None
        self._init_error: str | None = None

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._cfg.api_key:
            self._init_error = "llm.api_key is not configured"
            raise UpstreamError(self._init_error)
        try:
            self._client = self._factory(self._cfg)
        except OpenAIError as e:
            self._init_error = str(e)
            logger.error("OpenAI client init failed: %s", e)
            raise UpstreamError(f"client init failed: {e}") from e
        self._init_error = None
        logger.info("OpenAI client initialized (model=%s)", self._cfg.model)
        return self._client

    def is_available(self) -> bool:
        try:
            self._get_client()
        except UpstreamError:
            return False
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "available": self.is_available(),
            "initialized": self._client is not None,
            "error": self._init_error,
            "model": self._cfg.model,
        }

    async def complete(
        self, messages: Sequence[ChatTurn], options: GenerationOptions
    ) -> CompletionResult:
        client = self._get_client()
        model = options.model or self._cfg.model
        temperature = (
            options.temperature
            if options.temperature is not None
            else self._cfg.temperature
        )
        max_tokens = options.max_tokens or self._cfg.max_output_tokens
        logger.info(
            "Calling upstream model=%s turns=%d", model, len(messages)
        )
        t0 = time.perf_counter()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[m.to_payload() for m in messages],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
            )
        except APITimeoutError as e:
            raise UpstreamTimeoutError(str(e) or "upstream timeout") from e
        except OpenAIError as e:
            raise UpstreamError(str(e)) from e
        latency_ms = int((time.perf_counter() - t0) * 1000)
        metrics.observe("llm_request_latency_ms", latency_ms, {"model": model})

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message else None
        if not content or not content.strip():
            raise EmptyCompletionError("upstream returned no reply content")
        usage = getattr(response, "usage", None)
        return CompletionResult(
            text=content.strip(),
            model=getattr(response, "model", None) or model,
            latency_ms=latency_ms,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            finish_reason=getattr(choices[0], "finish_reason", None),
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None
