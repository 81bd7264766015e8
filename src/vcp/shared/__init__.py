"""Shared infrastructure: logging, LLM providers, storage."""
