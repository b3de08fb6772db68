"""LLM related exception hierarchy."""


class ModelError(Exception):
    """Base model exception."""


class UpstreamError(ModelError):
    """Raised when the upstream chat completion call fails.

    Typical reasons: network error, provider 4xx/5xx, missing client.
    """

    error_type = "upstream-error"


class UpstreamTimeoutError(UpstreamError):
    """Raised when the provider does not answer within the client timeout."""

    error_type = "upstream-timeout"


class EmptyCompletionError(UpstreamError):
    """Raised when the provider answers without any reply content."""

    error_type = "upstream-empty"
