"""LLM provider adapters for the embedding and completion ports."""
