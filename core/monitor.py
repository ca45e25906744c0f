"""
Pipeline health monitor.

Reads collector statuses through :class:`StatusProvider` on its own cadence,
flags stale collectors and raises a de-duplicated alert when the pipeline as a
whole has written nothing for a window. It never restarts anything; recovery
is an operator decision.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Protocol, Set

from .alerting import AlertDispatcher
from .config import OrchestratorConfig
from .interfaces import PersistenceSink
from .models import CollectorState, CollectorStatus, Severity, utcnow

logger = logging.getLogger(__name__)

MONITOR_JOB_ID = "pipeline:monitor"


class StatusProvider(Protocol):
    @property
    def is_running(self) -> bool: ...

    def collector_statuses(self) -> List[CollectorStatus]: ...

    def mark_collector_errored(self, name: str, message: str) -> None: ...


class PipelineMonitor:
    """Staleness and no-data checks, one :meth:`tick` at a time."""

    def __init__(
        self,
        sink: PersistenceSink,
        alerts: AlertDispatcher,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.sink = sink
        self.alerts = alerts
        self.config = config or OrchestratorConfig()
        self._provider: Optional[StatusProvider] = None
        self._stale: Set[str] = set()
        self._no_data_alerted = False

    def attach(self, provider: StatusProvider) -> None:
        self._provider = provider

    def reset(self) -> None:
        self._stale.clear()
        self._no_data_alerted = False

    def forget(self, name: str) -> None:
        """Re-arm the stale alert for one collector (after a restart)."""
        self._stale.discard(name)

    def is_stale(self, status: CollectorStatus, now: datetime) -> bool:
        age = status.seconds_since_update(now)
        if age is None:
            return False
        return age > status.update_interval_seconds * self.config.staleness_multiplier

    async def tick(self, now: Optional[datetime] = None) -> None:
        if self._provider is None:
            raise RuntimeError("PipelineMonitor has no status provider attached")

        now = now or utcnow()
        try:
            await self._check_staleness(now)
            await self._check_no_data()
        except Exception as e:
            logger.error(f"Monitor tick failed: {e}", exc_info=True)

    async def _check_staleness(self, now: datetime) -> None:
        for status in self._provider.collector_statuses():
            if status.state is CollectorState.STOPPED:
                self._stale.discard(status.name)
                continue

            if not self.is_stale(status, now):
                self._stale.discard(status.name)
                continue

            if status.name in self._stale:
                continue

            age = status.seconds_since_update(now)
            self._stale.add(status.name)
            self._provider.mark_collector_errored(status.name, "Pipeline appears to be stuck")
            logger.warning(f"{status.name} pipeline may be stuck (no update for {age:.0f}s)")
            await self.alerts.raise_alert(
                "SYSTEM",
                Severity.MEDIUM,
                "Data Pipeline Alert",
                f"{status.name} pipeline may be stuck (no update for {age:.0f}s)",
                {
                    "collector": status.name,
                    "seconds_since_update": age,
                    "update_interval_seconds": status.update_interval_seconds,
                },
            )

    async def _check_no_data(self) -> None:
        if not self._provider.is_running:
            return

        window = self.config.no_data_window_seconds
        try:
            recent = await self.sink.count_recent(window)
        except Exception as e:
            logger.error(f"Could not count recent records: {e}")
            return

        if recent > 0:
            self._no_data_alerted = False
            return

        if self._no_data_alerted:
            return

        self._no_data_alerted = True
        logger.error(f"No data records written in the last {window:.0f}s")
        await self.alerts.raise_alert(
            "SYSTEM",
            Severity.HIGH,
            "Data Pipeline Alert",
            "No data records",
            {
                "window_seconds": window,
                "collectors": [
                    s.model_dump(mode="json") for s in self._provider.collector_statuses()
                ],
            },
        )
