import pytest
from aiohttp import web
from aiohttp import test_utils

from core.exceptions import FetchError
from core.infra.http import HttpClient


@pytest.fixture
async def server():
    hits = {"flaky": 0}

    async def flaky(request):
        hits["flaky"] += 1
        if hits["flaky"] == 1:
            return web.Response(status=503)
        return web.json_response({"events": [], "ua": request.headers.get("User-Agent")})

    async def down(request):
        hits["down"] = hits.get("down", 0) + 1
        return web.Response(status=503)

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/down", down)
    app.router.add_get("/missing", missing)
    async with test_utils.TestServer(app) as srv:
        srv.hits = hits
        yield srv


@pytest.fixture
async def http():
    client = HttpClient(max_retries=2, base_delay=0, default_headers={"User-Agent": "pipeline-test"})
    yield client
    await client.close()


async def test_retries_transient_status(server, http):
    body = await http.get_json(str(server.make_url("/flaky")))

    assert body == {"events": [], "ua": "pipeline-test"}
    assert server.hits["flaky"] == 2


async def test_gives_up_after_max_retries(server, http):
    with pytest.raises(FetchError):
        await http.get_json(str(server.make_url("/down")))
    assert server.hits["down"] == 2


async def test_client_errors_are_not_retried(server, http):
    with pytest.raises(FetchError, match="HTTP 404"):
        await http.get_json(str(server.make_url("/missing")))
