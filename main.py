"""
Main entry point: build the pipeline, start every collector and the
management API, and run until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from collectors import build_collectors
from core.alerting import AlertDispatcher
from core.api import ApiServer
from core.config import PipelineSettings, load_settings
from core.exceptions import ConfigError
from core.infra.http import HttpClient
from core.infra.scheduler import Scheduler
from core.interfaces import AlertSink, PersistenceSink
from core.orchestrator import PipelineOrchestrator
from sinks.database_sink import DatabaseAlertSink, DatabaseSink
from sinks.discord_sink import DiscordAlertSink
from sinks.memory_sink import MemorySink
from sinks.telegram_sink import TelegramAlertSink


logger = logging.getLogger(__name__)


def setup_logging(settings: PipelineSettings, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=settings.logging.format)
    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def build_alert_sinks(settings: PipelineSettings, database_sink: Optional[DatabaseSink]) -> List[AlertSink]:
    sinks: List[AlertSink] = []
    alerts = settings.alerts

    if alerts.database and database_sink is not None:
        sinks.append(DatabaseAlertSink(database_sink.db))
    if alerts.discord_webhook_url:
        sinks.append(DiscordAlertSink(alerts.discord_webhook_url))
    if alerts.telegram_bot_token and alerts.telegram_chat_id:
        sinks.append(TelegramAlertSink(alerts.telegram_bot_token, alerts.telegram_chat_id))

    logger.info(f"Alert sinks: {', '.join(s.name for s in sinks) or 'log only'}")
    return sinks


async def run(settings: PipelineSettings, dry_run: bool = False) -> None:
    """Run the pipeline until a shutdown signal arrives."""
    if dry_run:
        logger.info("Dry run: records are kept in memory only")
        sink: PersistenceSink = MemorySink()
        database_sink = None
    else:
        database_sink = DatabaseSink(settings.database.path)
        await database_sink.connect()
        sink = database_sink

    alerts = AlertDispatcher(build_alert_sinks(settings, database_sink))
    http = HttpClient(
        timeout=settings.fetch_timeout_seconds,
        max_retries=settings.http.max_retries,
        base_delay=settings.http.base_delay,
        max_delay=settings.http.max_delay,
        default_headers={"User-Agent": settings.http.user_agent},
    )
    scheduler = Scheduler()

    collectors = build_collectors(settings, sink=sink, scheduler=scheduler, alerts=alerts, http=http)
    logger.info(f"Loaded {len(collectors)} collector(s)")
    for collector in collectors:
        interval = settings.orchestrator.interval_for(collector.name, collector.default_interval_seconds)
        logger.info(f"  - {collector.name}: every {interval:g}s")

    orchestrator = PipelineOrchestrator(
        collectors, scheduler, sink, alerts, config=settings.orchestrator
    )
    api = ApiServer(orchestrator, settings.api.host, settings.api.port) if settings.api.enabled else None

    # Setup graceful shutdown
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await orchestrator.start_all()
        if api:
            await api.start()
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        if api:
            await api.stop()
        await orchestrator.shutdown()
        await http.close()
        await alerts.close()
        await sink.close()
        logger.info("Shutdown complete")


def load_configuration(config_path: Optional[str] = None, env_file: Optional[str] = None) -> PipelineSettings:
    """Load secrets from a .env file into the environment, then read the settings."""
    load_dotenv(env_file)
    return load_settings(config_path)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sports data collection pipeline")
    parser.add_argument("--config", "-c", help="Path to pipeline.yml (default: $PIPELINE_CONFIG or pipeline.yml)")
    parser.add_argument("--env-file", help="Path to a .env file with secrets (default: search for .env)")
    parser.add_argument("--dry-run", action="store_true", help="Keep records in memory instead of the database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_configuration(args.config, args.env_file)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(settings, args.verbose)
    logger.info("Starting sports data pipeline...")

    try:
        asyncio.run(run(settings, dry_run=args.dry_run))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
