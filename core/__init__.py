"""Shared core: configuration, error taxonomy, metrics, logging, LLM access."""
