"""
Registry of the known source collectors.
"""

import logging
from typing import Dict, List, Type

from core.alerting import AlertDispatcher
from core.collector import BaseCollector
from core.config import PipelineSettings
from core.exceptions import ConfigError
from core.infra.http import HttpClient
from core.infra.scheduler import Scheduler
from core.interfaces import PersistenceSink

from .espn import EspnCollector
from .injury_weather import InjuryWeatherCollector
from .market import MarketCollector

logger = logging.getLogger(__name__)

KNOWN_COLLECTORS: Dict[str, Type[BaseCollector]] = {
    cls.name: cls for cls in (EspnCollector, InjuryWeatherCollector, MarketCollector)
}


def get_collector_class(name: str) -> Type[BaseCollector]:
    try:
        return KNOWN_COLLECTORS[name]
    except KeyError:
        raise ConfigError(f"Unknown collector in configuration: {name}") from None


def build_collectors(
    settings: PipelineSettings,
    *,
    sink: PersistenceSink,
    scheduler: Scheduler,
    alerts: AlertDispatcher,
    http: HttpClient,
) -> List[BaseCollector]:
    """Instantiate every enabled collector with its configured keyword arguments."""
    for name in settings.collectors:
        get_collector_class(name)

    collectors = []
    for name, cls in KNOWN_COLLECTORS.items():
        config = settings.collector(name)
        if not config.enabled:
            logger.info(f"Collector {name} disabled in configuration")
            continue
        try:
            collector = cls(
                sink=sink,
                scheduler=scheduler,
                alerts=alerts,
                fetch_timeout=settings.fetch_timeout_seconds,
                http=http,
                **config.kwargs(),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid options for collector {name}: {e}") from e
        collectors.append(collector)
        logger.debug(f"Built collector: {name}")
    return collectors


__all__ = [
    "KNOWN_COLLECTORS",
    "EspnCollector",
    "InjuryWeatherCollector",
    "MarketCollector",
    "build_collectors",
    "get_collector_class",
]
