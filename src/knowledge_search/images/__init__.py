"""Multi-provider image generation with retries, failover and monitoring."""

from knowledge_search.images.base import (
    GenerationResult,
    ImageGenerationService,
    ServiceLimits,
    ServiceStatus,
)
from knowledge_search.images.exceptions import (
    GenerationError,
    GenerationErrorType,
    PromptValidationError,
    UnsafePromptError,
)
from knowledge_search.images.factory import (
    build_configured_services,
    get_available_providers,
    get_provider,
    register_provider,
)
from knowledge_search.images.manager import (
    ImageGenerationManager,
    ManagedGeneration,
    get_manager,
    reset_manager,
)

__all__ = [
    "GenerationError",
    "GenerationErrorType",
    "GenerationResult",
    "ImageGenerationManager",
    "ImageGenerationService",
    "ManagedGeneration",
    "PromptValidationError",
    "ServiceLimits",
    "ServiceStatus",
    "UnsafePromptError",
    "build_configured_services",
    "get_available_providers",
    "get_manager",
    "get_provider",
    "register_provider",
    "reset_manager",
]
