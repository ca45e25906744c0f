import pytest
from aiohttp import test_utils

import pipeline_cli
from core.api import create_app
from core.orchestrator import PipelineOrchestrator
from pipeline_cli import ApiError, PipelineApi, format_duration, parse_args, print_metrics, print_status


@pytest.mark.parametrize("seconds, text", [(42, "42s"), (90, "1.5m"), (5400, "1.5h"), (172800, "2.0d")])
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text


def test_parse_args():
    args = parse_args(["--url", "http://pipeline:9000", "metrics", "6"])
    assert args.url == "http://pipeline:9000"
    assert args.command == "metrics"
    assert args.hours == 6.0

    assert parse_args(["restart", "espn"]).name == "espn"


@pytest.fixture
async def api(make_collector, scheduler, memory_sink, alerts):
    orchestrator = PipelineOrchestrator([make_collector(name="espn")], scheduler, memory_sink, alerts)
    async with test_utils.TestServer(create_app(orchestrator)) as server:
        yield PipelineApi(str(server.make_url("")))


async def test_client_round_trip(api, capsys):
    status = await api.start()
    assert status["state"] == "running"

    print_status(await api.status())
    out = capsys.readouterr().out
    assert "Fake Collector" in out
    assert "System Healthy" in out

    print_metrics(await api.metrics(2))
    assert "Total" in capsys.readouterr().out


async def test_client_surfaces_api_errors(api):
    with pytest.raises(ApiError) as excinfo:
        await api.restart("yahoo")
    assert excinfo.value.status == 404


def test_main_reports_unreachable_pipeline(capsys):
    code = pipeline_cli.main(["--url", "http://127.0.0.1:9", "status"])
    assert code == 1
    assert "Cannot reach pipeline" in capsys.readouterr().out
