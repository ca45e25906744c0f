import asyncio

import pytest

from core.config import OrchestratorConfig
from core.exceptions import AlreadyRunning, UnknownCollector
from core.models import CollectorState, OrchestratorState
from core.monitor import MONITOR_JOB_ID
from core.orchestrator import PipelineOrchestrator
from tests.fakes import sleeper


@pytest.fixture
def pair(make_collector):
    fast = make_collector(name="fast", fetches={"main": [{"id": "1"}, {"id": "2"}]})
    fast.default_interval_seconds = 30
    slow = make_collector(name="slow", fetches={"main": [{"id": "3"}]})
    slow.default_interval_seconds = 300
    return fast, slow


@pytest.fixture
def orchestrator(pair, scheduler, memory_sink, alerts):
    return PipelineOrchestrator(pair, scheduler, memory_sink, alerts)


async def run_ticks(scheduler, *collectors):
    for collector in collectors:
        await scheduler.fire(collector.job_id)
    for collector in collectors:
        await collector.wait_idle(timeout=1)


async def test_scenario_stale_collector_then_restart(orchestrator, pair, scheduler, clock):
    fast, slow = pair
    await orchestrator.start_all()
    await run_ticks(scheduler, fast, slow)

    await orchestrator.monitor.tick(clock.now)
    status = orchestrator.get_status()
    assert status.is_running
    assert status.collector("fast").state is CollectorState.RUNNING
    assert status.collector("slow").state is CollectorState.RUNNING
    assert status.collector("fast").records_processed == 2

    fast.fetches = {"main": RuntimeError("upstream down")}
    clock.advance(61)
    await run_ticks(scheduler, fast)
    await orchestrator.monitor.tick(clock.now)

    status = orchestrator.get_status()
    assert status.collector("fast").state is CollectorState.ERRORED
    assert status.collector("slow").state is CollectorState.RUNNING

    restarted = await orchestrator.restart_collector("fast")

    assert restarted.state is CollectorState.RUNNING
    assert restarted.records_processed == 0
    assert restarted.recent_errors == []
    assert orchestrator.get_status().collector("slow").records_processed == 1


async def test_start_all_schedules_collectors_and_monitor(orchestrator, scheduler):
    await orchestrator.start_all()

    assert orchestrator.state is OrchestratorState.RUNNING
    assert scheduler.running
    assert set(scheduler.jobs) == {"collector:fast", "collector:slow", MONITOR_JOB_ID}
    assert scheduler.jobs["collector:fast"]["seconds"] == 30
    assert scheduler.jobs["collector:slow"]["seconds"] == 300
    assert scheduler.jobs[MONITOR_JOB_ID]["seconds"] == 30


async def test_interval_overrides_from_config(orchestrator, scheduler):
    await orchestrator.start_all(OrchestratorConfig(intervals={"slow": 120}, monitor_interval_seconds=10))

    assert scheduler.jobs["collector:slow"]["seconds"] == 120
    assert scheduler.jobs[MONITOR_JOB_ID]["seconds"] == 10
    assert orchestrator.get_status().collector("slow").update_interval_seconds == 120


async def test_start_all_twice_is_rejected(orchestrator):
    await orchestrator.start_all()
    with pytest.raises(AlreadyRunning):
        await orchestrator.start_all()


async def test_start_is_best_effort(make_collector, scheduler, memory_sink, alerts):
    good = make_collector(name="good")
    bad = make_collector(name="bad", setup_error=RuntimeError("missing api key"))
    orchestrator = PipelineOrchestrator([bad, good], scheduler, memory_sink, alerts)

    await orchestrator.start_all()

    status = orchestrator.get_status()
    assert status.is_running
    assert status.collector("bad").state is CollectorState.ERRORED
    assert "missing api key" in status.collector("bad").recent_errors[0].message
    assert status.collector("good").state is CollectorState.RUNNING
    assert scheduler.has_job(MONITOR_JOB_ID)


async def test_restart_unknown_collector(orchestrator):
    await orchestrator.start_all()
    with pytest.raises(UnknownCollector):
        await orchestrator.restart_collector("yahoo")


async def test_restart_leaves_siblings_alone(orchestrator, pair, scheduler):
    fast, slow = pair
    await orchestrator.start_all()
    await run_ticks(scheduler, fast, slow)
    slow_job = scheduler.jobs["collector:slow"]

    await orchestrator.restart_collector("fast")

    assert scheduler.jobs["collector:slow"] is slow_job
    assert slow.status.records_processed == 1
    assert scheduler.jobs["collector:fast"]["seconds"] == 30


async def test_stop_all_stops_everything(orchestrator, scheduler):
    await orchestrator.start_all()
    await orchestrator.stop_all()

    assert orchestrator.state is OrchestratorState.STOPPED
    assert scheduler.jobs == {}
    assert all(s.state is CollectorState.STOPPED for s in orchestrator.collector_statuses())

    await orchestrator.stop_all()
    assert orchestrator.state is OrchestratorState.STOPPED


async def test_stop_all_waits_for_cycle_in_flight(make_collector, scheduler, memory_sink, alerts):
    started, release = asyncio.Event(), asyncio.Event()
    collector = make_collector(name="busy", fetches={"main": sleeper(started=started, release=release)})
    orchestrator = PipelineOrchestrator([collector], scheduler, memory_sink, alerts)
    await orchestrator.start_all()
    await scheduler.fire(collector.job_id)
    await started.wait()

    stopping = asyncio.create_task(orchestrator.stop_all())
    await asyncio.sleep(0)
    assert orchestrator.state is OrchestratorState.STOPPING

    release.set()
    await stopping

    assert orchestrator.state is OrchestratorState.STOPPED
    assert collector.status.state is CollectorState.STOPPED
    assert len(memory_sink.records) == 1


async def test_restart_after_stop_resets_counters(orchestrator, pair, scheduler):
    fast, slow = pair
    await orchestrator.start_all()
    await run_ticks(scheduler, fast, slow)
    await orchestrator.stop_all()

    await orchestrator.start_all()

    assert all(s.records_processed == 0 for s in orchestrator.collector_statuses())
    assert all(s.state is CollectorState.RUNNING for s in orchestrator.collector_statuses())


async def test_get_metrics(orchestrator, pair, scheduler):
    fast, slow = pair
    await orchestrator.start_all()
    await run_ticks(scheduler, fast, slow)

    metrics = await orchestrator.get_metrics(window_hours=1)

    assert metrics["total_records"] == 3
    assert metrics["window_hours"] == 1
    assert metrics["pipeline_status"]["state"] == "running"
    assert {(m["source"], m["count"]) for m in metrics["metrics"]} == {("fast", 2), ("slow", 1)}


async def test_shutdown_stops_the_scheduler(orchestrator, scheduler):
    await orchestrator.start_all()
    await orchestrator.shutdown()

    assert not scheduler.running
    assert orchestrator.state is OrchestratorState.STOPPED


async def test_restart_waits_for_the_cycle_in_flight(make_collector, scheduler, memory_sink, alerts):
    started, release = asyncio.Event(), asyncio.Event()
    collector = make_collector(name="busy", fetches={"main": sleeper(started=started, release=release)})
    orchestrator = PipelineOrchestrator([collector], scheduler, memory_sink, alerts)
    await orchestrator.start_all()
    await scheduler.fire(collector.job_id)
    await started.wait()

    restarting = asyncio.create_task(orchestrator.restart_collector("busy"))
    await asyncio.sleep(0)
    assert not restarting.done()

    release.set()
    restarted = await restarting

    assert len(memory_sink.records) == 1
    assert restarted.records_processed == 0
    assert restarted.state is CollectorState.RUNNING
    assert scheduler.jobs[collector.job_id]["run_immediately"]
