"""Persisted run state for named pipelines.

``last_success_at`` is the only input for incremental "since when" queries,
so it is written by ``mark_success`` alone.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database.models import PipelineState
from app.repositories.pipeline_state_repository import PipelineStateRepository
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


class CheckpointStore:
    """Reads and writes one ``pipeline_state`` row per pipeline name."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository_factory: Callable[[AsyncSession], PipelineStateRepository] = PipelineStateRepository,
    ):
        self.session_factory = session_factory
        self.repository_factory = repository_factory

    async def get(self, pipeline_name: str) -> Optional[PipelineState]:
        async with self.session_factory() as session:
            return await self.repository_factory(session).get_by_name(pipeline_name)

    async def last_success_at(self, pipeline_name: str) -> Optional[datetime]:
        state = await self.get(pipeline_name)
        return state.last_success_at if state else None

    async def mark_running(self, pipeline_name: str) -> None:
        await self._write(
            pipeline_name,
            last_run_at=datetime.now(timezone.utc),
            last_status=STATUS_RUNNING,
        )
        LOGGER.info("Pipeline started", extra={"pipeline": pipeline_name})

    async def mark_success(
        self,
        pipeline_name: str,
        records_processed: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        await self._write(
            pipeline_name,
            last_run_at=now,
            last_success_at=now,
            last_status=STATUS_SUCCESS,
            records_processed=records_processed,
            state_metadata=metadata or {},
        )
        LOGGER.info(
            "Pipeline succeeded",
            extra={"pipeline": pipeline_name, "records_processed": records_processed},
        )

    async def mark_failed(self, pipeline_name: str, error: str) -> None:
        await self._write(
            pipeline_name,
            last_run_at=datetime.now(timezone.utc),
            last_status=STATUS_FAILED,
            state_metadata={"error": error, "failed_at": datetime.now(timezone.utc).isoformat()},
        )
        LOGGER.error("Pipeline failed", extra={"pipeline": pipeline_name, "error": error})

    async def record_progress(self, pipeline_name: str, records_processed: int, metadata: Dict[str, Any]) -> None:
        """Store in-flight counters without changing the run status."""
        await self._write(
            pipeline_name,
            records_processed=records_processed,
            state_metadata=metadata,
        )

    async def _write(self, pipeline_name: str, **values: Any) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await self.repository_factory(session).upsert(pipeline_name, **values)
