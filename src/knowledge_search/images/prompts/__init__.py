"""Prompt templates, catalog and prompt cache."""

from knowledge_search.images.prompts.cache import PromptCacheService, parameters_hash
from knowledge_search.images.prompts.catalog import ImageGenerationParams, PromptOptions
from knowledge_search.images.prompts.engine import (
    PromptTemplateEngine,
    ValidationResult,
    get_prompt_engine,
)

__all__ = [
    "ImageGenerationParams",
    "PromptCacheService",
    "PromptOptions",
    "PromptTemplateEngine",
    "ValidationResult",
    "get_prompt_engine",
    "parameters_hash",
]
