"""Persistence for generated image records."""

import json
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.db.models import GeneratedImage, ImageStatus, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
SORT_COLUMNS = {
    "created_at": GeneratedImage.created_at,
    "generation_time_ms": GeneratedImage.generation_time_ms,
    "status": GeneratedImage.status,
}
SEARCHABLE_PARAMETERS = ("pose", "outfit", "footwear", "prop", "frameType", "frameId")
POPULAR_PARAMETERS = ("pose", "outfit", "footwear")


class GeneratedImageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, image_id: str, user_id: str, parameters: dict[str, Any]
    ) -> GeneratedImage:
        image = GeneratedImage(
            image_id=image_id,
            user_id=user_id,
            object_key="",
            prompt_parameters=json.dumps(parameters),
            status=ImageStatus.PENDING.value,
            created_at=utcnow(),
        )
        self.session.add(image)
        await self.session.commit()
        await self.session.refresh(image)
        return image

    async def get(self, image_id: str) -> GeneratedImage | None:
        return await self.session.get(GeneratedImage, image_id)

    async def update(self, image_id: str, **fields: Any) -> GeneratedImage | None:
        """Set columns on an image record. Unknown columns raise AttributeError."""
        image = await self.get(image_id)
        if image is None:
            logger.warning(f"Cannot update missing image record {image_id}")
            return None
        for name, value in fields.items():
            if not hasattr(GeneratedImage, name):
                raise AttributeError(f"GeneratedImage has no column {name}")
            setattr(image, name, value.value if isinstance(value, ImageStatus) else value)
        await self.session.commit()
        return image

    async def mark_complete(
        self,
        image_id: str,
        object_key: str,
        public_url: str,
        generation_time_ms: int,
        service_used: str,
    ) -> GeneratedImage | None:
        return await self.update(
            image_id,
            status=ImageStatus.COMPLETE,
            object_key=object_key,
            public_url=public_url,
            generation_time_ms=generation_time_ms,
            service_used=service_used,
            error_message=None,
        )

    async def mark_failed(
        self, image_id: str, error_message: str, generation_time_ms: int | None = None
    ) -> GeneratedImage | None:
        return await self.update(
            image_id,
            status=ImageStatus.FAILED,
            error_message=error_message,
            generation_time_ms=generation_time_ms,
        )

    async def list_by_user(
        self,
        user_id: str,
        status: str | None = None,
        sort_by: str = "created_at",
        order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> list[GeneratedImage]:
        column = SORT_COLUMNS.get(sort_by, GeneratedImage.created_at)
        query = select(GeneratedImage).where(GeneratedImage.user_id == user_id)
        if status:
            query = query.where(GeneratedImage.status == status)
        query = query.order_by(column.asc() if order.lower() == "asc" else column.desc())
        query = query.limit(max(1, min(limit, MAX_PAGE_SIZE))).offset(max(0, offset))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_user(self, user_id: str, status: str | None = None) -> int:
        query = select(func.count(GeneratedImage.image_id)).where(
            GeneratedImage.user_id == user_id
        )
        if status:
            query = query.where(GeneratedImage.status == status)
        return (await self.session.execute(query)).scalar_one()

    async def delete(self, image_id: str) -> bool:
        result = await self.session.execute(
            delete(GeneratedImage).where(GeneratedImage.image_id == image_id)
        )
        await self.session.commit()
        return bool(result.rowcount)

    async def get_many(self, image_ids: list[str]) -> list[GeneratedImage]:
        if not image_ids:
            return []
        result = await self.session.execute(
            select(GeneratedImage).where(GeneratedImage.image_id.in_(image_ids))
        )
        return list(result.scalars().all())

    async def stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Counts by status and service, optionally for a single user."""
        scope = [GeneratedImage.user_id == user_id] if user_id is not None else []

        total = (
            await self.session.execute(
                select(func.count(GeneratedImage.image_id)).where(*scope)
            )
        ).scalar_one()

        by_status = {
            status: count
            for status, count in (
                await self.session.execute(
                    select(GeneratedImage.status, func.count(GeneratedImage.image_id))
                    .where(*scope)
                    .group_by(GeneratedImage.status)
                )
            ).all()
        }

        by_service = {
            service: count
            for service, count in (
                await self.session.execute(
                    select(GeneratedImage.service_used, func.count(GeneratedImage.image_id))
                    .where(GeneratedImage.service_used.is_not(None), *scope)
                    .group_by(GeneratedImage.service_used)
                )
            ).all()
        }

        avg_time = (
            await self.session.execute(
                select(func.avg(GeneratedImage.generation_time_ms)).where(
                    GeneratedImage.status == ImageStatus.COMPLETE.value, *scope
                )
            )
        ).scalar_one()

        since = utcnow() - timedelta(days=1)
        last_24h = (
            await self.session.execute(
                select(func.count(GeneratedImage.image_id)).where(
                    GeneratedImage.created_at > since, *scope
                )
            )
        ).scalar_one()

        return {
            "total_images": total,
            "complete": by_status.get(ImageStatus.COMPLETE.value, 0),
            "pending": by_status.get(ImageStatus.PENDING.value, 0),
            "failed": by_status.get(ImageStatus.FAILED.value, 0),
            "by_service": by_service,
            "average_generation_time_ms": float(avg_time) if avg_time is not None else None,
            "images_last_24h": last_24h,
        }

    async def cleanup_failed(self, days_old: int = 7) -> int:
        cutoff = utcnow() - timedelta(days=days_old)
        result = await self.session.execute(
            delete(GeneratedImage).where(
                GeneratedImage.status == ImageStatus.FAILED.value,
                GeneratedImage.created_at < cutoff,
            )
        )
        await self.session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} failed image records older than {days_old} days")
        return removed

    def _parameter_query(
        self,
        query: Select,
        filters: dict[str, str | None],
        user_id: str | None = None,
        status: str | None = None,
    ) -> Select:
        if user_id is not None:
            query = query.where(GeneratedImage.user_id == user_id)
        if status:
            query = query.where(GeneratedImage.status == status)
        for key, value in filters.items():
            if key not in SEARCHABLE_PARAMETERS or value is None:
                continue
            query = query.where(
                func.json_extract(GeneratedImage.prompt_parameters, f"$.{key}") == value
            )
        return query

    async def search_by_parameters(
        self,
        filters: dict[str, str | None],
        limit: int = 50,
        user_id: str | None = None,
        status: str | None = None,
        offset: int = 0,
    ) -> list[GeneratedImage]:
        """Find records whose stored parameters match every given value.

        Keys outside SEARCHABLE_PARAMETERS and None values are ignored.
        """
        query = self._parameter_query(select(GeneratedImage), filters, user_id, status)
        query = (
            query.order_by(GeneratedImage.created_at.desc())
            .limit(max(1, min(limit, MAX_PAGE_SIZE)))
            .offset(max(0, offset))
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_parameters(
        self,
        filters: dict[str, str | None],
        user_id: str | None = None,
        status: str | None = None,
    ) -> int:
        query = self._parameter_query(
            select(func.count(GeneratedImage.image_id)), filters, user_id, status
        )
        return (await self.session.execute(query)).scalar_one()

    async def popular_parameters(
        self, user_id: str, keys: tuple[str, ...] = POPULAR_PARAMETERS, top: int = 3
    ) -> dict[str, list[dict[str, Any]]]:
        """Most used values per parameter for one user, most frequent first."""
        popular: dict[str, list[dict[str, Any]]] = {}
        for key in keys:
            value = func.json_extract(GeneratedImage.prompt_parameters, f"$.{key}")
            rows = await self.session.execute(
                select(value, func.count(GeneratedImage.image_id).label("count"))
                .where(GeneratedImage.user_id == user_id, value.is_not(None))
                .group_by(value)
                .order_by(func.count(GeneratedImage.image_id).desc(), value)
                .limit(top)
            )
            popular[key] = [{"value": v, "count": count} for v, count in rows.all()]
        return popular
