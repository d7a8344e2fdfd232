"""Adapters connecting the core to storage, LLM providers and web frameworks."""
