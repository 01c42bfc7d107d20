from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import anyio
import msgspec

from ..errors import TransportError
from ..logging import get_logger
from ..transport import IncomingMessage
from .api_models import Chat, Message, Update, User
from .client import BotClient

logger = get_logger(__name__)

POLL_TIMEOUT_S = 50
POLL_BACKOFF_S = 2.0


def _display_name(entity: User | Chat | None) -> str | None:
    if entity is None:
        return None
    return entity.first_name or entity.last_name or entity.username


def parse_incoming_message(msg: Message) -> IncomingMessage:
    reply = msg.reply_to_message
    chat_name = msg.chat.title or _display_name(msg.chat)
    return IncomingMessage(
        chat_id=msg.chat.id,
        message_id=msg.message_id,
        text=msg.text,
        sender_id=msg.from_.id if msg.from_ is not None else None,
        sender_name=_display_name(msg.from_),
        chat_name=chat_name,
        reply_to_message_id=reply.message_id if reply is not None else None,
        reply_to_sender_id=(
            reply.from_.id if reply is not None and reply.from_ is not None else None
        ),
    )


def parse_incoming_update(update: Update | dict[str, Any]) -> IncomingMessage | None:
    if isinstance(update, dict):
        try:
            update = msgspec.convert(update, type=Update)
        except msgspec.ValidationError:
            return None
    if update.message is None:
        return None
    return parse_incoming_message(update.message)


async def poll_incoming(
    bot: BotClient,
    *,
    offset: int | None = None,
    timeout_s: int = POLL_TIMEOUT_S,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> AsyncIterator[IncomingMessage]:
    while True:
        try:
            updates = await bot.get_updates(
                offset=offset, timeout_s=timeout_s, allowed_updates=["message"]
            )
        except TransportError as exc:
            logger.info("telegram.poll_failed", error=str(exc))
            await sleep(POLL_BACKOFF_S)
            continue
        for raw in updates:
            update_id = raw.get("update_id")
            if isinstance(update_id, int):
                offset = update_id + 1
            msg = parse_incoming_update(raw)
            if msg is None:
                logger.debug("telegram.update_skipped", update_id=update_id)
                continue
            yield msg
