"""Base class for answer-generation LLM clients."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """A single chat turn sent to the model."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class BaseLLM(ABC):
    """Base class for LLM implementations."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai')."""
        pass

    @abstractmethod
    async def chat(self, messages: list[ChatMessage], **kwargs: Any) -> str:
        """Run a chat completion and return the assistant text."""
        pass

    @abstractmethod
    async def check_health(self) -> bool:
        """Check if the LLM service is accessible and healthy."""
        pass

    async def generate(self, prompt: str, system: str | None = None, **kwargs: Any) -> str:
        """Generate text from a single prompt, with an optional system message."""
        messages = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        return await self.chat(messages, **kwargs)

    async def is_available(self) -> bool:
        """Lightweight check if provider is configured.

        This checks configuration (e.g., API key exists) without making
        network requests. Override in subclasses as needed.
        """
        return True
