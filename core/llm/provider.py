"""ChatProvider interface.

Providers must not allocate network clients on import; the OpenAI provider
creates its client lazily on first use.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

from .types import ChatTurn, CompletionResult, GenerationOptions


class ChatProvider(ABC):
    @abstractmethod
    async def complete(
        self, messages: Sequence[ChatTurn], options: GenerationOptions
    ) -> CompletionResult:
        """Return the assistant reply for ``messages``.

        Raises UpstreamError (or a subclass) on any failure, including a
        reply without content.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """True when the provider is configured and its client can be built."""

    def status(self) -> Dict[str, Any]:
        return {"available": self.is_available()}

    async def aclose(self) -> None:  # optional hook
        """Release network resources (default no-op)."""
        return None
