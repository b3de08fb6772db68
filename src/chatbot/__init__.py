"""Chatbot backend: REST + WebSocket chat over an OpenAI-compatible API."""

__version__ = "0.1.0"
