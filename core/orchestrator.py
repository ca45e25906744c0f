"""
Orchestrator for the collector lifecycle: start and stop the known
collectors as a group, restart one on demand, and report their status.
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from .alerting import AlertDispatcher
from .collector import BaseCollector
from .config import OrchestratorConfig
from .exceptions import AlreadyRunning, UnknownCollector
from .infra.scheduler import Scheduler
from .interfaces import PersistenceSink
from .models import CollectorState, CollectorStatus, OrchestratorState, PipelineStatus, utcnow
from .monitor import MONITOR_JOB_ID, PipelineMonitor


logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Owns the known collectors and the monitor job.

    Usage:
        >>> orchestrator = PipelineOrchestrator(collectors, scheduler, sink, alerts)
        >>> await orchestrator.start_all(config)
        >>> orchestrator.get_status()
        >>> await orchestrator.restart_collector("espn")
        >>> await orchestrator.stop_all()
    """

    def __init__(
        self,
        collectors: Iterable[BaseCollector],
        scheduler: Scheduler,
        sink: PersistenceSink,
        alerts: AlertDispatcher,
        monitor: Optional[PipelineMonitor] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self._known: List[BaseCollector] = list(collectors)
        self.scheduler = scheduler
        self.sink = sink
        self.alerts = alerts
        self.config = config or OrchestratorConfig()
        self.monitor = monitor or PipelineMonitor(sink, alerts, self.config)
        self.monitor.attach(self)

        self._collectors: Dict[str, BaseCollector] = {}
        self._state = OrchestratorState.STOPPED

    # ------------------------------------------------------------------ #
    # Status provider contract (read by the monitor)
    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is OrchestratorState.RUNNING

    def collector_statuses(self) -> List[CollectorStatus]:
        return [c.snapshot() for c in self._collectors.values()]

    def mark_collector_errored(self, name: str, message: str) -> None:
        self._get(name).mark_errored(message)

    @property
    def collector_names(self) -> List[str]:
        return list(self._collectors)

    def _get(self, name: str) -> BaseCollector:
        try:
            return self._collectors[name]
        except KeyError:
            raise UnknownCollector(name) from None

    # ------------------------------------------------------------------ #
    # Lifecycle
    def register(self, collector: BaseCollector) -> None:
        if collector.name in self._collectors:
            return
        self._collectors[collector.name] = collector
        logger.debug(f"Registered collector: {collector.name}")

    async def start_all(self, config: Optional[OrchestratorConfig] = None) -> None:
        """Start every known collector; best effort, never all-or-nothing."""
        if self._state in (OrchestratorState.STARTING, OrchestratorState.RUNNING):
            raise AlreadyRunning("Data pipelines are already running")
        if self._state is OrchestratorState.STOPPING:
            raise AlreadyRunning("Data pipelines are still stopping")

        if config is not None:
            self.config = config
            self.monitor.config = config

        logger.info("Starting data pipeline orchestrator...")
        self._state = OrchestratorState.STARTING

        for collector in self._known:
            self.register(collector)

        await self.scheduler.start()

        for name, collector in self._collectors.items():
            interval = self.config.interval_for(name, collector.default_interval_seconds)
            collector.reset_status()
            try:
                await collector.start(interval)
            except Exception as e:
                logger.error(f"Failed to start {name} collector: {e}", exc_info=True)
                collector.status.update_interval_seconds = interval
                collector.mark_errored(f"start failed: {e}")

        self.monitor.reset()
        self.scheduler.add_interval_job(
            self.monitor.tick,
            seconds=self.config.monitor_interval_seconds,
            job_id=MONITOR_JOB_ID,
        )

        self._state = OrchestratorState.RUNNING
        self.log_system_status()

        failed = [s.name for s in self.collector_statuses() if s.state is CollectorState.ERRORED]
        if failed:
            logger.warning(f"Data pipelines started with failures: {', '.join(failed)}")
        else:
            logger.info("All data pipelines started")

    async def stop_all(self) -> None:
        """Stop every collector and the monitor; in-flight cycles finish."""
        if self._state is OrchestratorState.STOPPED:
            logger.info("Data pipelines are not running")
            return

        logger.info("Stopping all data pipelines...")
        self._state = OrchestratorState.STOPPING

        for name, collector in self._collectors.items():
            try:
                collector.stop()
            except Exception as e:
                logger.error(f"Failed to stop {name} collector: {e}")

        self.scheduler.remove_job(MONITOR_JOB_ID)

        grace = self.config.shutdown_grace_seconds
        results = await asyncio.gather(
            *(c.wait_idle(grace) for c in self._collectors.values())
        )
        if not all(results):
            logger.warning(f"Some collector cycles still running after {grace:.0f}s")

        self._state = OrchestratorState.STOPPED
        self.log_system_status()
        logger.info("All data pipelines stopped")

    async def restart_collector(self, name: str) -> CollectorStatus:
        """Stop, reset and start one collector with its configured interval."""
        collector = self._get(name)
        logger.info(f"Restarting {name} collector...")

        interval = collector.status.update_interval_seconds
        collector.stop()
        grace = self.config.shutdown_grace_seconds
        if not await collector.wait_idle(grace):
            logger.warning(f"{name} cycle still running after {grace:.0f}s, restarting anyway")
        collector.reset_status()
        self.monitor.forget(name)
        try:
            await collector.start(interval)
        except Exception as e:
            logger.error(f"Failed to restart {name} collector: {e}")
            collector.mark_errored(f"restart failed: {e}")
        else:
            logger.info(f"{name} collector restarted")
        return collector.snapshot()

    async def shutdown(self) -> None:
        """Stop everything and release the scheduler and collector resources."""
        await self.stop_all()
        await self.scheduler.stop()
        for collector in self._collectors.values():
            try:
                await collector.close()
            except Exception as e:
                logger.warning(f"Failed to close {collector.name} collector: {e}")

    # ------------------------------------------------------------------ #
    # Reporting
    def get_status(self) -> PipelineStatus:
        return PipelineStatus(state=self._state, collectors=self.collector_statuses())

    async def get_metrics(self, window_hours: float = 1.0) -> Dict[str, Any]:
        window = timedelta(hours=window_hours)
        metrics = await self.sink.metrics(window.total_seconds())
        return {
            "timestamp": utcnow().isoformat(),
            "window_hours": window_hours,
            "metrics": metrics,
            "total_records": sum(m["count"] for m in metrics),
            "pipeline_status": self.get_status().model_dump(mode="json"),
        }

    def log_system_status(self) -> None:
        status = self.get_status().model_dump(mode="json")
        logger.info("Pipeline status: %s", json.dumps(status, indent=2))
