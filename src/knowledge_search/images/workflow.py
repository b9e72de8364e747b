"""End-to-end image generation: validation, safety, persistence and storage.

`submit` runs inside the request: it validates the selections, builds the
prompt (through the prompt cache), screens it and creates a PENDING record.
`run` is scheduled as a background task and drives the record to COMPLETE
or FAILED.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.db.database import async_session_maker
from knowledge_search.images.exceptions import (
    GenerationError,
    PromptValidationError,
    UnsafePromptError,
)
from knowledge_search.images.manager import ImageGenerationManager
from knowledge_search.images.prompts.cache import PromptCacheService
from knowledge_search.images.prompts.catalog import ImageGenerationParams
from knowledge_search.images.prompts.engine import PromptTemplateEngine, get_prompt_engine
from knowledge_search.images.repository import GeneratedImageRepository
from knowledge_search.images.storage import AssetStorage, StorageError
from knowledge_search.security.manager import SAFETY_VIOLATION, SecurityManager
from knowledge_search.security.safety import ContentSafetyChecker

logger = logging.getLogger(__name__)


@dataclass
class SubmittedGeneration:
    image_id: str
    prompt: str
    cache_hit: bool
    warnings: list[str] = field(default_factory=list)


class ImageGenerationWorkflow:
    def __init__(
        self,
        manager: ImageGenerationManager,
        engine: PromptTemplateEngine | None = None,
        storage: AssetStorage | None = None,
        safety: ContentSafetyChecker | None = None,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
    ):
        self.manager = manager
        self.engine = engine or get_prompt_engine()
        self.storage = storage or AssetStorage()
        self.safety = safety or ContentSafetyChecker()
        self.session_factory = session_factory

    async def submit(
        self,
        session: AsyncSession,
        params: ImageGenerationParams,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SubmittedGeneration:
        """Accept a generation request and create its PENDING record.

        Raises:
            PromptValidationError: Selections are missing or incompatible
            UnsafePromptError: The built prompt failed the safety screen
        """
        validation = self.engine.validate(params)
        if not validation.is_valid:
            raise PromptValidationError(validation.errors, validation.warnings)

        cache = PromptCacheService(session)
        prompt, cache_hit = await cache.get_or_build(params, self.engine.build_prompt)

        security = SecurityManager(session)
        safety = self.safety.check(prompt)
        if not safety.safe:
            await security.log_event(
                SAFETY_VIOLATION,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                resource="/api/v1/images/generate",
                status="blocked",
                risk_level="high",
                details={"flags": safety.flags, "confidence": safety.confidence},
            )
            logger.warning(f"Blocked unsafe prompt for user {user_id}: {safety.flags}")
            raise UnsafePromptError(safety.flags, safety.confidence)

        image_id = str(uuid.uuid4())
        await GeneratedImageRepository(session).create(
            image_id, user_id, params.model_dump(by_alias=True)
        )
        await security.record_generation_request(
            user_id, ip_address, user_agent, details={"image_id": image_id}
        )
        logger.info(f"Image {image_id} queued for user {user_id} (prompt cache hit: {cache_hit})")
        return SubmittedGeneration(
            image_id=image_id,
            prompt=prompt,
            cache_hit=cache_hit,
            warnings=validation.warnings,
        )

    async def run(self, image_id: str, prompt: str, parameters: dict[str, Any]) -> None:
        """Generate, store and record the outcome of a queued image."""
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        async with self.session_factory() as session:
            repo = GeneratedImageRepository(session)
            try:
                generation = await self.manager.generate_image(prompt)
                if not generation.result.image_url:
                    raise StorageError("Provider returned no image")
                stored = await self.storage.store_from_url(
                    generation.result.image_url,
                    generation_params=parameters,
                    original_filename=f"capitao-caverna-{image_id}.png",
                )
            except GenerationError as e:
                logger.error(f"Image {image_id} generation failed: {e}")
                await repo.mark_failed(image_id, e.message, elapsed_ms())
                return
            except StorageError as e:
                logger.error(f"Image {image_id} storage failed: {e}")
                await repo.mark_failed(image_id, str(e), elapsed_ms())
                return
            except Exception as e:
                logger.error(f"Image {image_id} failed unexpectedly: {e}", exc_info=True)
                await repo.mark_failed(image_id, str(e) or "Unknown error occurred", elapsed_ms())
                return

            await repo.mark_complete(
                image_id,
                object_key=stored.object_key,
                public_url=stored.public_url,
                generation_time_ms=elapsed_ms(),
                service_used=generation.service_name,
            )
            logger.info(
                f"Image {image_id} complete via {generation.service_name} "
                f"after {generation.attempts} attempt(s)"
            )

    async def delete_assets(self, object_key: str | None) -> bool:
        if not object_key:
            return False
        try:
            return await asyncio.to_thread(self.storage.delete, object_key)
        except StorageError as e:
            logger.warning(f"Could not delete stored image {object_key}: {e}")
            return False
