"""Telegram-specific clients and adapters."""

from .client import BotClient, TelegramApiError, TelegramClient, TelegramRetryAfter
from .parsing import parse_incoming_update, poll_incoming
from .transport import TelegramTransport

__all__ = [
    "BotClient",
    "TelegramApiError",
    "TelegramClient",
    "TelegramRetryAfter",
    "TelegramTransport",
    "parse_incoming_update",
    "poll_incoming",
]
