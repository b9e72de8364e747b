"""Configuration management using pydantic-settings."""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Knowledge Search"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./knowledge_search.db"

    # LLM Provider Selection (answers for basic search)
    LLM_PROVIDER: str = "openai"

    # OpenAI (chat completions)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    SEARCH_ANSWER_MAX_TOKENS: int = 500
    SEARCH_ANSWER_TEMPERATURE: float = 0.3

    # Search
    SEARCH_TOP_K: int = 10  # Basic search row limit
    ENHANCED_SEARCH_MAX_RESULTS: int = 20
    SEARCH_CONTEXT_ENTRIES: int = 3  # Entries passed to the LLM as context

    # Image providers
    DALLE_API_KEY: str = ""  # Falls back to OPENAI_API_KEY if empty
    DALLE_MODEL: str = "dall-e-3"
    MIDJOURNEY_API_KEY: str = ""
    MIDJOURNEY_BASE_URL: str = "https://api.midjourney.com/v1"
    STABILITY_API_KEY: str = ""
    STABILITY_BASE_URL: str = "https://api.stability.ai/v1"
    STABILITY_ENGINE_ID: str = "stable-diffusion-xl-1024-v1-0"
    IMAGE_PROVIDER_PRIORITY: str = "dalle,stable-diffusion,midjourney"  # First = highest
    IMAGE_MOCK_PROVIDER: bool = False  # Register the offline mock adapter

    # Retry policy (seconds)
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_JITTER: float = 0.1

    # Circuit breaker (seconds)
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RECOVERY_TIMEOUT: float = 30.0
    CIRCUIT_SUCCESS_THRESHOLD: int = 2
    CIRCUIT_MONITORING_WINDOW: float = 60.0

    # Generated image storage
    IMAGE_STORAGE_DIR: str = "data/images"
    IMAGE_PUBLIC_BASE_URL: str = "/media"
    IMAGE_ESTIMATED_SECONDS: int = 60  # Used for pending progress estimates

    # Security
    RATE_LIMIT_PER_USER_PER_HOUR: int = 50
    RATE_LIMIT_PER_IP_PER_HOUR: int = 100
    RATE_LIMIT_GLOBAL_PER_MINUTE: int = 1000
    BLOCKED_KEYWORDS: str = (
        "violence,weapon,drug,hate,explicit,nude,sexual,inappropriate,offensive"
    )
    AUDIT_RETENTION_DAYS: int = 90
    ADMIN_EMAILS: str = ""  # Comma-separated

    # Retention
    PROMPT_CACHE_RETENTION_DAYS: int = 30
    FAILED_IMAGE_RETENTION_DAYS: int = 7

    @property
    def dalle_api_key(self) -> str:
        """DALL-E key, falling back to the shared OpenAI key."""
        return self.DALLE_API_KEY or self.OPENAI_API_KEY

    @property
    def image_provider_priority(self) -> list[str]:
        """Get image provider names in priority order."""
        return [p.strip().lower() for p in self.IMAGE_PROVIDER_PRIORITY.split(",") if p.strip()]

    @property
    def blocked_keyword_list(self) -> list[str]:
        """Get blocked prompt keywords as a list."""
        return [k.strip().lower() for k in self.BLOCKED_KEYWORDS.split(",") if k.strip()]

    @property
    def admin_email_list(self) -> list[str]:
        """Get admin emails as a lowercase list."""
        if not self.ADMIN_EMAILS:
            return []
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @model_validator(mode="after")
    def check_image_providers(self) -> "Settings":
        """Warn when image generation has nothing to run on."""
        has_provider = any(
            (self.dalle_api_key, self.MIDJOURNEY_API_KEY, self.STABILITY_API_KEY)
        )
        if not has_provider and not self.IMAGE_MOCK_PROVIDER:
            logging.warning(
                "No image provider configured: set DALLE_API_KEY, MIDJOURNEY_API_KEY, "
                "STABILITY_API_KEY or IMAGE_MOCK_PROVIDER=true"
            )
        return self


settings = Settings()
