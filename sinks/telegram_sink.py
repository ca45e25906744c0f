"""
Telegram sink for sending pipeline alerts to a chat.
"""

import logging

from telegram import Bot

from core.interfaces import AlertSink
from core.models import Alert, Severity


logger = logging.getLogger(__name__)

_ICONS = {
    Severity.LOW: "ℹ️",
    Severity.MEDIUM: "⚠️",
    Severity.HIGH: "🔴",
}


def format_alert(alert: Alert) -> str:
    message = f"{_ICONS[alert.severity]} *{alert.title}*\n\n"
    message += f"{alert.message}\n\n"
    message += f"*Type:* {alert.type}\n"
    message += f"*Severity:* {alert.severity.value.upper()}\n"
    message += f"*Raised:* {alert.raised_at.strftime('%Y-%m-%d %H:%M:%S')} UTC"
    return message


class TelegramAlertSink(AlertSink):
    """Sink that sends alerts to a Telegram chat."""

    name = "TelegramAlertSink"

    def __init__(self, bot_token: str, chat_id: str, bot: Bot = None):
        if not chat_id:
            raise ValueError("Telegram chat_id is required")
        self.bot = bot or Bot(token=bot_token)
        self.chat_id = chat_id

    async def handle(self, alert: Alert) -> None:
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=format_alert(alert),
            parse_mode="Markdown",
        )
        logger.debug(f"Sent Telegram alert: {alert.title}")
