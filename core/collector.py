"""
Source collector framework.

A collector polls one external data domain on its own interval job:
fetch (fan-out, all-settled) -> normalize -> persist, one record at a time,
so a bad item never costs its siblings. Everything that touches the status
record runs synchronously between awaits on the one event loop.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from .alerting import AlertDispatcher
from .infra.scheduler import Scheduler
from .interfaces import PersistenceSink
from .models import (
    CollectorState,
    CollectorStatus,
    NormalizedRecord,
    RawItem,
    Severity,
    utcnow,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass
class SubFetch:
    """One independently failing unit of a fetch cycle (a sport, a feed, a game)."""
    label: str
    run: Callable[[], Awaitable[List[RawItem]]]


@dataclass
class SettledResult:
    label: str
    items: List[RawItem]
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleResult:
    """Outcome of one ``run_cycle`` call."""
    skipped: bool = False
    fetch_failed: bool = False
    fetched: int = 0
    persisted: int = 0
    errors: int = 0


async def gather_settled(fetches: Sequence[SubFetch], timeout: float) -> List[SettledResult]:
    """Run sub-fetches concurrently, each under its own timeout.

    A failure or timeout in one never cancels the others.
    """

    async def _one(fetch: SubFetch) -> SettledResult:
        try:
            items = await asyncio.wait_for(fetch.run(), timeout=timeout)
            return SettledResult(fetch.label, list(items or []))
        except asyncio.TimeoutError:
            return SettledResult(fetch.label, [], TimeoutError(f"timed out after {timeout:g}s"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return SettledResult(fetch.label, [], e)

    return list(await asyncio.gather(*(_one(f) for f in fetches)))


def _describe(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


class BaseCollector(ABC):
    """Abstract base class for source collectors.

    Subclasses provide ``name``, ``display_name``, ``default_interval_seconds``,
    :meth:`sub_fetches` and :meth:`normalize`.
    """

    name: str = "collector"
    display_name: str = ""
    default_interval_seconds: float = 60.0

    def __init__(
        self,
        *,
        sink: PersistenceSink,
        scheduler: Scheduler,
        alerts: Optional[AlertDispatcher] = None,
        fetch_timeout: float = 15.0,
        clock: Optional[Clock] = None,
    ) -> None:
        self.sink = sink
        self.scheduler = scheduler
        self.alerts = alerts
        self.fetch_timeout = fetch_timeout
        self._clock: Clock = clock or utcnow
        self._scheduled = False
        self._settle_when_idle = False
        self._in_flight: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self.status = CollectorStatus(
            name=self.name,
            display_name=self.display_name or self.name,
            update_interval_seconds=self.default_interval_seconds,
        )

    # ------------------------------------------------------------------ #
    # Subclass hooks
    @abstractmethod
    def sub_fetches(self) -> List[SubFetch]:
        """The independent fetches making up one cycle."""
        pass

    @abstractmethod
    def normalize(self, raw: RawItem) -> List[NormalizedRecord]:
        """Turn one raw item into zero or more records; raise on malformed input."""
        pass

    async def setup(self) -> None:
        """Called by :meth:`start`; raise to refuse starting."""
        pass

    async def after_cycle(self, records: List[NormalizedRecord]) -> List[NormalizedRecord]:
        """Derived records to persist once the cycle's own records are written."""
        return []

    async def close(self) -> None:
        pass

    # ------------------------------------------------------------------ #
    # Lifecycle
    @property
    def job_id(self) -> str:
        return f"collector:{self.name}"

    @property
    def is_scheduled(self) -> bool:
        return self._scheduled

    @property
    def cycle_in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """Run a cycle now, then every ``interval_seconds``."""
        if self._scheduled:
            logger.warning(f"{self.name} collector already running, ignoring start")
            return

        interval = interval_seconds or self.default_interval_seconds
        await self.setup()

        self.status.update_interval_seconds = interval
        self.status.last_update = self._clock()
        self.status.state = CollectorState.RUNNING
        self.scheduler.add_interval_job(
            self._tick, seconds=interval, job_id=self.job_id, run_immediately=True
        )
        self._scheduled = True
        logger.info(f"{self.name} collector running (updates every {interval:g}s)")

    def stop(self) -> None:
        """Cancel future ticks; a cycle in flight finishes on its own."""
        if not self._scheduled:
            return
        self.scheduler.remove_job(self.job_id)
        self._scheduled = False
        if self.cycle_in_flight:
            self._settle_when_idle = True
        else:
            self.status.state = CollectorState.STOPPED
        logger.info(f"{self.name} collector stopped")

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight cycles without cancelling them."""
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    def mark_errored(self, message: str) -> None:
        self.status.state = CollectorState.ERRORED
        self.status.record_error(message, self._clock())

    def reset_status(self) -> None:
        """Fresh counters and error log, keeping the configured interval."""
        self.status = CollectorStatus(
            name=self.name,
            display_name=self.status.display_name,
            state=self.status.state,
            update_interval_seconds=self.status.update_interval_seconds,
            last_update=self._clock(),
        )

    def snapshot(self) -> CollectorStatus:
        return self.status.model_copy(deep=True)

    # ------------------------------------------------------------------ #
    # Fetch cycle
    async def _tick(self) -> None:
        """Scheduler callback; the cycle runs as its own task so that shutting
        the scheduler down never cancels it."""
        task = asyncio.get_running_loop().create_task(
            self.run_cycle(), name=f"cycle-{self.name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_cycle(self) -> CycleResult:
        """Execute one fetch -> normalize -> persist cycle."""
        if self.cycle_in_flight:
            logger.warning(f"{self.name}: previous cycle still running, skipping tick")
            return CycleResult(skipped=True)

        self._in_flight = asyncio.current_task()
        try:
            return await self._run_cycle()
        finally:
            self._in_flight = None
            if self._settle_when_idle and not self._scheduled:
                self.status.state = CollectorState.STOPPED
            self._settle_when_idle = False

    async def _run_cycle(self) -> CycleResult:
        result = CycleResult()
        logger.debug(f"{self.name}: fetching")

        fetches = self.sub_fetches()
        settled = await gather_settled(fetches, self.fetch_timeout)

        raw_items: List[RawItem] = []
        for outcome in settled:
            if outcome.ok:
                raw_items.extend(outcome.items)
            else:
                result.errors += 1
                message = f"fetch {outcome.label} failed: {_describe(outcome.error)}"
                logger.warning(f"{self.name}: {message}")
                self.status.record_error(message, self._clock())

        if settled and not any(outcome.ok for outcome in settled):
            result.fetch_failed = True
            self.status.state = CollectorState.ERRORED
            logger.error(f"{self.name}: every fetch failed this cycle")
            return result

        result.fetched = len(raw_items)
        written: List[NormalizedRecord] = []

        for raw in raw_items:
            try:
                records = self.normalize(raw)
            except Exception as e:
                result.errors += 1
                self._record_failure(f"normalize {raw.kind} from {raw.source} failed", e)
                continue
            for record in records:
                if await self._persist(record, result):
                    written.append(record)

        try:
            derived = await self.after_cycle(written)
        except Exception as e:
            result.errors += 1
            self._record_failure("post-processing failed", e)
            derived = []
        for record in derived:
            await self._persist(record, result)

        self.status.records_processed += result.persisted
        self.status.last_update = self._clock()
        if self._scheduled:
            self.status.state = CollectorState.RUNNING

        logger.info(
            f"{self.name}: cycle complete, {result.persisted} records persisted, "
            f"{result.errors} errors"
        )
        return result

    async def _persist(self, record: NormalizedRecord, result: CycleResult) -> bool:
        try:
            await self.sink.persist(record)
        except Exception as e:
            result.errors += 1
            self._record_failure(f"persist {record.data_type.value} {record.source_id} failed", e)
            return False
        result.persisted += 1
        return True

    def _record_failure(self, message: str, error: BaseException) -> None:
        full = f"{message}: {_describe(error)}"
        logger.error(f"{self.name}: {full}")
        self.status.record_error(full, self._clock())

    async def alert(self, type: str, severity: Severity, title: str, message: str, **context) -> None:
        """Collector-level alert, best effort."""
        if self.alerts is not None:
            await self.alerts.raise_alert(type, severity, title, message, context)
