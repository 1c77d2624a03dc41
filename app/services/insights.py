"""Downstream per-fleet insight regeneration."""

from typing import Protocol

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class InsightRegenerator(Protocol):
    """Rebuilds derived insights for a fleet over a lookback window.

    Implementations must tolerate fleets with stale or no data.
    """

    async def regenerate(self, fleet_id: int, window: str) -> None:
        ...


class LoggingInsightRegenerator:
    """Default regenerator used when no insight generator is wired in."""

    async def regenerate(self, fleet_id: int, window: str) -> None:
        LOGGER.info(
            "Insight regeneration requested",
            extra={"fleet_id": fleet_id, "window": window},
        )
