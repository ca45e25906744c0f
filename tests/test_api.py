import pytest
from aiohttp import test_utils

from core.api import create_app
from core.orchestrator import PipelineOrchestrator


@pytest.fixture
def orchestrator(make_collector, scheduler, memory_sink, alerts):
    collectors = [make_collector(name="espn"), make_collector(name="market")]
    return PipelineOrchestrator(collectors, scheduler, memory_sink, alerts)


@pytest.fixture
async def client(orchestrator):
    async with test_utils.TestClient(test_utils.TestServer(create_app(orchestrator))) as client:
        yield client


async def test_status_before_start(client):
    resp = await client.get("/status")
    assert resp.status == 200
    body = await resp.json()
    assert body["state"] == "stopped"
    assert body["is_running"] is False


async def test_start_then_start_again_conflicts(client):
    resp = await client.post("/start")
    assert resp.status == 200
    body = await resp.json()
    assert body["is_running"] is True
    assert {c["name"]: c["state"] for c in body["collectors"]} == {
        "espn": "running",
        "market": "running",
    }

    resp = await client.post("/start")
    assert resp.status == 409
    assert "already running" in (await resp.json())["error"]


async def test_metrics(client, scheduler, orchestrator):
    await client.post("/start")
    await scheduler.fire("collector:espn")
    await orchestrator._get("espn").wait_idle(timeout=1)

    resp = await client.get("/metrics", params={"hours": "2"})
    assert resp.status == 200
    body = await resp.json()
    assert body["window_hours"] == 2
    assert body["total_records"] == 1
    assert body["pipeline_status"]["state"] == "running"


@pytest.mark.parametrize("hours", ["soon", "0", "-3", "nan", "inf"])
async def test_metrics_rejects_bad_window(client, hours):
    resp = await client.get("/metrics", params={"hours": hours})
    assert resp.status == 400


async def test_restart_unknown_collector_is_404(client):
    await client.post("/start")
    resp = await client.post("/collectors/yahoo/restart")
    assert resp.status == 404


async def test_restart_collector(client, orchestrator):
    await client.post("/start")
    orchestrator.mark_collector_errored("market", "pipeline may be stuck")

    resp = await client.post("/collectors/market/restart")

    assert resp.status == 200
    body = await resp.json()
    assert body["name"] == "market"
    assert body["state"] == "running"
    assert body["recent_errors"] == []


async def test_stop(client, scheduler):
    await client.post("/start")
    resp = await client.post("/stop")

    assert resp.status == 200
    body = await resp.json()
    assert body["state"] == "stopped"
    assert all(c["state"] == "stopped" for c in body["collectors"])
    assert scheduler.jobs == {}
