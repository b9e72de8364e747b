"""LLM provider implementations."""

from knowledge_search.rag.providers.openai import OpenAILLM

__all__ = ["OpenAILLM"]
