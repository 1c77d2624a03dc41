from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import InsightCache
from app.repositories.base_repository import BaseRepository


class InsightCacheRepository(BaseRepository[InsightCache]):
    """Repository for derived per-fleet insights."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with the InsightCache model."""
        super().__init__(session, InsightCache)

    async def delete_expired(self, now: datetime) -> int:
        """Delete rows whose ``valid_until`` is before ``now``.

        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(InsightCache).where(InsightCache.valid_until < now)
        )
        return result.rowcount or 0
