"""
Discord sink for posting pipeline alerts to a channel webhook.
"""

import logging
from typing import Optional

import aiohttp
import discord
from discord import Embed

from core.interfaces import AlertSink
from core.models import Alert, Severity


logger = logging.getLogger(__name__)

_COLORS = {
    Severity.LOW: 0x3498DB,
    Severity.MEDIUM: 0xFF8C00,
    Severity.HIGH: 0xFF0000,
}

_ICONS = {
    Severity.LOW: "ℹ️",
    Severity.MEDIUM: "⚠️",
    Severity.HIGH: "🔴",
}


class DiscordAlertSink(AlertSink):
    """Sink that sends alert embeds to a Discord webhook."""

    name = "DiscordAlertSink"

    def __init__(self, webhook_url: str, session: Optional[aiohttp.ClientSession] = None):
        if not webhook_url:
            raise ValueError("Discord webhook URL is required")
        self.webhook_url = webhook_url
        self._session = session
        self._owns_session = session is None
        self._webhook: Optional[discord.Webhook] = None

    def _get_webhook(self) -> discord.Webhook:
        if self._webhook is None:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            self._webhook = discord.Webhook.from_url(self.webhook_url, session=self._session)
        return self._webhook

    def build_embed(self, alert: Alert) -> Embed:
        embed = Embed(
            title=f"{_ICONS[alert.severity]} {alert.title}",
            description=alert.message,
            color=_COLORS[alert.severity],
            timestamp=alert.raised_at,
        )
        embed.add_field(name="Type", value=alert.type, inline=True)
        embed.add_field(name="Severity", value=alert.severity.value.upper(), inline=True)

        # Discord caps embeds at 25 fields
        for key, value in list(alert.context.items())[:10]:
            if isinstance(value, (dict, list)):
                continue
            text = str(value)
            embed.add_field(
                name=key.replace("_", " ").title(),
                value=text[:100] + "..." if len(text) > 100 else text,
                inline=True,
            )
        embed.set_footer(text="Sports data pipeline")
        return embed

    async def handle(self, alert: Alert) -> None:
        """Post one alert; errors propagate to the dispatcher."""
        await self._get_webhook().send(embed=self.build_embed(alert))
        logger.debug(f"Sent Discord alert: {alert.title}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
        self._webhook = None
