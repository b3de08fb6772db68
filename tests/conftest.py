"""Pytest configuration ensuring project root is importable.

Adds repository root and ``src`` to sys.path explicitly to avoid
interpreter/path quirks, isolates config/env/metrics state between tests and
provides a scripted stand-in for the upstream LLM provider.
"""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from core import metrics  # noqa: E402
from core.llm import ChatProvider, CompletionResult, TokenUsage  # noqa: E402


class StubProvider(ChatProvider):
    """Scripted provider: pops queued replies, else echoes the last turn."""

    def __init__(self, replies=None, error=None, delay=0.0):
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls = []
        self.closed = False

    async def complete(self, messages, options):
        self.calls.append((list(messages), options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.replies:
            text = self.replies.pop(0)
        else:
            text = f"echo: {messages[-1].content}"
        return CompletionResult(
            text=text,
            model=options.model or "stub-model",
            latency_ms=1,
            usage=TokenUsage(),
            finish_reason="stop",
        )

    def is_available(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch, tmp_path):  # noqa: D401
    """Ensure global config/env side effects do not leak between tests.

    - Clear aggregated config cache between tests
    - Point CHATBOT_CONFIG_DIR at an empty temp dir
    - Drop legacy and CHATBOT__ prefixed environment variables
    - Reset in-process metrics
    """
    from core.config import clear_config_cache  # local import
    from core.config.loader import ENV_PREFIX, LEGACY_ENV

    for key in list(os.environ):
        if key in LEGACY_ENV or key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir()
    monkeypatch.setenv("CHATBOT_CONFIG_DIR", str(cfg_dir))
    clear_config_cache()
    metrics.reset_for_tests()
    try:
        yield
    finally:
        clear_config_cache()


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "configs"


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def make_provider():
    return StubProvider


@pytest.fixture
def make_app():
    """Build an app from the (isolated) config with a stub provider."""
    from core.config import load_config
    from chatbot.api.app import create_app

    def _make(provider=None, **kwargs):
        return create_app(load_config(), provider or StubProvider(), **kwargs)

    return _make
