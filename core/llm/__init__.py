"""LLM providers abstraction layer exports.

No built-in dummy provider. Tests implement their own lightweight fake
provider against ``ChatProvider``.
"""

from .provider import ChatProvider  # noqa: F401
from .types import (  # noqa: F401
    ChatTurn,
    CompletionResult,
    GenerationOptions,
    TokenUsage,
)
from .exceptions import (  # noqa: F401
    ModelError,
    UpstreamError,
    UpstreamTimeoutError,
    EmptyCompletionError,
)
from .openai_provider import OpenAIChatProvider  # noqa: F401

__all__ = ["ChatProvider", "ChatTurn", "CompletionResult", "GenerationOptions", "TokenUsage", "ModelError", "UpstreamError", "UpstreamTimeoutError", "EmptyCompletionError", "OpenAIChatProvider"]  # noqa: E501
