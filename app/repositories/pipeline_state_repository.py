from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import PipelineState
from app.repositories.base_repository import BaseRepository


class PipelineStateRepository(BaseRepository[PipelineState]):
    """Repository for named pipeline checkpoints."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with the PipelineState model."""
        super().__init__(session, PipelineState)

    async def get_by_name(self, pipeline_name: str) -> Optional[PipelineState]:
        result = await self.session.execute(
            select(PipelineState).where(PipelineState.pipeline_name == pipeline_name)
        )
        return result.scalar_one_or_none()

    async def upsert(self, pipeline_name: str, **values: Any) -> None:
        """Create the checkpoint row or update the given columns on it.

        ``state_metadata`` is passed as the ``metadata`` column.
        """
        columns: Dict[str, Any] = dict(values)
        if "state_metadata" in columns:
            columns["metadata"] = columns.pop("state_metadata")

        statement = insert(PipelineState.__table__).values(pipeline_name=pipeline_name, **columns)
        statement = statement.on_conflict_do_update(
            index_elements=["pipeline_name"],
            set_={**columns, "updated_at": func.now()},
        )
        await self.session.execute(statement)
