"""
Best-effort alert fan-out.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .interfaces import AlertSink
from .models import Alert, Severity

logger = logging.getLogger(__name__)

_LOG_LEVEL = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
}


class AlertDispatcher:
    """Hands every alert to each configured sink.

    Alerting is never load-bearing: a sink failure is logged and swallowed.
    """

    def __init__(self, sinks: Optional[Iterable[AlertSink]] = None):
        self.sinks: List[AlertSink] = list(sinks or [])

    def add_sink(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    async def raise_alert(
        self,
        type: str,
        severity: Severity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = Alert(
            type=type,
            severity=Severity(severity),
            title=title,
            message=message,
            context=context or {},
        )
        logger.log(_LOG_LEVEL[alert.severity], f"[{alert.type}/{alert.severity.value}] {title}: {message}")

        for sink in self.sinks:
            try:
                await sink.handle(alert)
            except Exception as e:
                logger.error(f"Alert sink {sink.name} failed: {e}")
        return alert

    async def close(self) -> None:
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Failed to close alert sink {sink.name}: {e}")
