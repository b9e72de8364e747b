"""Database cache of built prompts keyed by their parameters."""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.db.models import PromptCache, utcnow
from knowledge_search.images.prompts.catalog import ImageGenerationParams

logger = logging.getLogger(__name__)


def parameters_hash(params: ImageGenerationParams) -> str:
    """SHA-256 of the parameters as compact JSON with sorted keys."""
    payload = json.dumps(params.cache_key_fields(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class PromptCacheService:
    """Reads and writes `PromptCache` rows through one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, params: ImageGenerationParams) -> str | None:
        """Return the cached prompt and record the hit, or None on a miss."""
        entry = await self.session.get(PromptCache, parameters_hash(params))
        if entry is None:
            return None
        entry.last_used = utcnow()
        entry.usage_count = (entry.usage_count or 0) + 1
        await self.session.commit()
        return entry.full_prompt

    async def put(self, params: ImageGenerationParams, full_prompt: str) -> str:
        """Store a prompt; an existing entry keeps its usage count plus one."""
        key = parameters_hash(params)
        entry = await self.session.get(PromptCache, key)
        now = utcnow()
        if entry is None:
            entry = PromptCache(
                parameters_hash=key,
                full_prompt=full_prompt,
                created_at=now,
                last_used=now,
                usage_count=1,
            )
            self.session.add(entry)
        else:
            entry.full_prompt = full_prompt
            entry.last_used = now
            entry.usage_count = (entry.usage_count or 0) + 1
        await self.session.commit()
        return key

    async def get_or_build(
        self, params: ImageGenerationParams, build: Callable[[ImageGenerationParams], str]
    ) -> tuple[str, bool]:
        """Return (prompt, cache_hit), building and storing on a miss."""
        cached = await self.get(params)
        if cached is not None:
            return cached, True
        prompt = build(params)
        await self.put(params, prompt)
        return prompt, False

    async def would_hit(self, params: ImageGenerationParams) -> bool:
        result = await self.session.execute(
            select(PromptCache.parameters_hash).where(
                PromptCache.parameters_hash == parameters_hash(params)
            )
        )
        return result.scalar_one_or_none() is not None

    async def stats(self) -> dict[str, Any]:
        row = (
            await self.session.execute(
                select(
                    func.count(PromptCache.parameters_hash),
                    func.sum(PromptCache.usage_count),
                    func.avg(PromptCache.usage_count),
                    func.min(PromptCache.created_at),
                    func.max(PromptCache.created_at),
                )
            )
        ).one()
        total, hits, average, oldest, newest = row

        most_used = (
            await self.session.execute(
                select(PromptCache.parameters_hash, PromptCache.usage_count)
                .order_by(PromptCache.usage_count.desc())
                .limit(1)
            )
        ).first()

        return {
            "total_entries": total or 0,
            "total_hits": hits or 0,
            "average_usage_count": float(average or 0),
            "oldest_entry": oldest.isoformat() if oldest else None,
            "newest_entry": newest.isoformat() if newest else None,
            "most_used_entry": (
                {"hash": most_used[0], "count": most_used[1]} if most_used else None
            ),
        }

    async def entries(self, limit: int = 50, offset: int = 0) -> list[PromptCache]:
        result = await self.session.execute(
            select(PromptCache)
            .order_by(PromptCache.last_used.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def cleanup_old(self, days_old: int = 30) -> int:
        """Delete entries not used in the last `days_old` days."""
        cutoff = utcnow() - timedelta(days=days_old)
        result = await self.session.execute(
            delete(PromptCache).where(PromptCache.last_used < cutoff)
        )
        await self.session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} prompt cache entries unused for {days_old} days")
        return removed

    async def keep_most_used(self, keep_count: int = 1000) -> int:
        """Delete all but the `keep_count` most used entries."""
        keep = (
            select(PromptCache.parameters_hash)
            .order_by(PromptCache.usage_count.desc(), PromptCache.last_used.desc())
            .limit(keep_count)
        )
        result = await self.session.execute(
            delete(PromptCache).where(PromptCache.parameters_hash.not_in(keep))
        )
        await self.session.commit()
        return result.rowcount or 0

    async def invalidate(self, params: ImageGenerationParams) -> bool:
        result = await self.session.execute(
            delete(PromptCache).where(PromptCache.parameters_hash == parameters_hash(params))
        )
        await self.session.commit()
        return bool(result.rowcount)

    async def clear(self) -> int:
        result = await self.session.execute(delete(PromptCache))
        await self.session.commit()
        return result.rowcount or 0

    async def warmup(self, combinations: list[tuple[ImageGenerationParams, str]]) -> int:
        for params, prompt in combinations:
            await self.put(params, prompt)
        return len(combinations)
