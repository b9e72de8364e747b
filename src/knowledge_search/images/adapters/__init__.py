"""Provider adapters."""

from knowledge_search.images.adapters.dalle import DalleAdapter
from knowledge_search.images.adapters.midjourney import MidjourneyAdapter
from knowledge_search.images.adapters.mock import MockAdapter
from knowledge_search.images.adapters.stable_diffusion import StableDiffusionAdapter

__all__ = ["DalleAdapter", "MidjourneyAdapter", "MockAdapter", "StableDiffusionAdapter"]
