"""
Management HTTP API for the pipeline orchestrator.

    GET  /status                      pipeline and collector status
    GET  /metrics?hours=N             record counts per (data_type, source)
    POST /start                       start every collector
    POST /stop                        stop every collector
    POST /collectors/{name}/restart   restart one collector
"""

import logging
import math
from typing import Optional

from aiohttp import web

from .exceptions import AlreadyRunning, PipelineError, UnknownCollector
from .orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

ORCHESTRATOR_KEY = web.AppKey("orchestrator", PipelineOrchestrator)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except UnknownCollector as e:
        return web.json_response({"error": str(e)}, status=404)
    except AlreadyRunning as e:
        return web.json_response({"error": str(e)}, status=409)
    except PipelineError as e:
        logger.error(f"{request.method} {request.path} failed: {e}")
        return web.json_response({"error": str(e)}, status=500)


async def handle_status(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    return web.json_response(orchestrator.get_status().model_dump(mode="json"))


async def handle_metrics(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        hours = float(request.query.get("hours", "1"))
    except ValueError:
        return web.json_response({"error": "hours must be a number"}, status=400)
    if not math.isfinite(hours) or hours <= 0:
        return web.json_response({"error": "hours must be a positive number"}, status=400)
    return web.json_response(await orchestrator.get_metrics(hours))


async def handle_start(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    await orchestrator.start_all()
    return web.json_response(orchestrator.get_status().model_dump(mode="json"))


async def handle_stop(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    await orchestrator.stop_all()
    return web.json_response(orchestrator.get_status().model_dump(mode="json"))


async def handle_restart(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    status = await orchestrator.restart_collector(request.match_info["name"])
    return web.json_response(status.model_dump(mode="json"))


def create_app(orchestrator: PipelineOrchestrator) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[ORCHESTRATOR_KEY] = orchestrator
    app.router.add_get("/status", handle_status)
    app.router.add_get("/metrics", handle_metrics)
    app.router.add_post("/start", handle_start)
    app.router.add_post("/stop", handle_stop)
    app.router.add_post("/collectors/{name}/restart", handle_restart)
    return app


class ApiServer:
    """Runs the management app on the current event loop."""

    def __init__(self, orchestrator: PipelineOrchestrator, host: str = "127.0.0.1", port: int = 8080):
        self.app = create_app(orchestrator)
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Management API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
