"""Image provider factory with registry pattern."""

import logging
from typing import Callable

from knowledge_search.config import settings
from knowledge_search.images.base import ImageGenerationService
from knowledge_search.images.exceptions import GenerationError, GenerationErrorType

logger = logging.getLogger(__name__)

# Maps provider names to (factory, is_configured) pairs
_PROVIDER_REGISTRY: dict[
    str, tuple[Callable[[], ImageGenerationService], Callable[[], bool]]
] = {}


def register_provider(
    name: str, configured: Callable[[], bool] = lambda: True
) -> Callable[[Callable[[], ImageGenerationService]], Callable[[], ImageGenerationService]]:
    """Decorator to register an image provider factory.

    Args:
        name: Registry name
        configured: Cheap check that the provider has credentials
    """

    def decorator(
        factory: Callable[[], ImageGenerationService],
    ) -> Callable[[], ImageGenerationService]:
        _PROVIDER_REGISTRY[name.lower()] = (factory, configured)
        logger.debug(f"Registered image provider: {name}")
        return factory

    return decorator


def get_available_providers() -> list[str]:
    """Get list of registered provider names."""
    return list(_PROVIDER_REGISTRY.keys())


def get_provider(name: str) -> ImageGenerationService:
    """Build a provider instance by name.

    Raises:
        GenerationError: AUTHENTICATION_ERROR if unknown or missing credentials
    """
    entry = _PROVIDER_REGISTRY.get(name.lower())
    if entry is None:
        available = ", ".join(get_available_providers())
        raise GenerationError(
            GenerationErrorType.AUTHENTICATION_ERROR,
            f"Unknown image provider '{name}'. Available: {available}",
            service=name,
        )
    factory, configured = entry
    if not configured():
        raise GenerationError(
            GenerationErrorType.AUTHENTICATION_ERROR,
            "Provider has no credentials configured",
            service=name,
        )
    return factory()


def build_configured_services() -> list[tuple[ImageGenerationService, int]]:
    """Instantiate every configured provider with its priority.

    Priority follows IMAGE_PROVIDER_PRIORITY (index 0 first); providers not
    listed there come after, in registration order.
    """
    order = settings.image_provider_priority
    services: list[tuple[ImageGenerationService, int]] = []
    for position, name in enumerate(get_available_providers()):
        factory, configured = _PROVIDER_REGISTRY[name]
        if not configured():
            continue
        priority = order.index(name) if name in order else len(order) + position
        services.append((factory(), priority))
        logger.info(f"Image provider enabled: {name} (priority {priority})")
    return services


@register_provider("dalle", configured=lambda: bool(settings.dalle_api_key))
def _create_dalle() -> ImageGenerationService:
    from knowledge_search.images.adapters.dalle import DalleAdapter

    return DalleAdapter()


@register_provider("midjourney", configured=lambda: bool(settings.MIDJOURNEY_API_KEY))
def _create_midjourney() -> ImageGenerationService:
    from knowledge_search.images.adapters.midjourney import MidjourneyAdapter

    return MidjourneyAdapter()


@register_provider("stable-diffusion", configured=lambda: bool(settings.STABILITY_API_KEY))
def _create_stable_diffusion() -> ImageGenerationService:
    from knowledge_search.images.adapters.stable_diffusion import StableDiffusionAdapter

    return StableDiffusionAdapter()


@register_provider("mock", configured=lambda: settings.IMAGE_MOCK_PROVIDER)
def _create_mock() -> ImageGenerationService:
    from knowledge_search.images.adapters.mock import MockAdapter

    return MockAdapter()
