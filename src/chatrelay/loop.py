from __future__ import annotations

from collections.abc import AsyncIterator, Collection
from dataclasses import dataclass

import anyio

from .dispatcher import Dispatcher
from .errors import TransportError
from .logging import get_logger
from .transport import IncomingMessage

logger = get_logger(__name__)

PERMISSION_DENIED_TEXT = "Permission denied"


@dataclass(frozen=True, slots=True)
class AccessPolicy:
    allowed_chat_ids: frozenset[int]

    @classmethod
    def from_ids(cls, chat_ids: Collection[int]) -> AccessPolicy:
        return cls(allowed_chat_ids=frozenset(chat_ids))

    def allows(self, msg: IncomingMessage) -> bool:
        return msg.chat_id in self.allowed_chat_ids


async def _reject(dispatcher: Dispatcher, msg: IncomingMessage) -> None:
    logger.warning(
        "loop.rejected",
        chat_id=msg.chat_id,
        chat=msg.chat_name,
        sender_id=msg.sender_id,
    )
    try:
        await dispatcher.config.transport.send_message(msg.chat_id, PERMISSION_DENIED_TEXT)
    except TransportError as exc:
        logger.warning("loop.reject_notice_failed", chat_id=msg.chat_id, error=str(exc))


async def _run_update(
    dispatcher: Dispatcher, access: AccessPolicy, msg: IncomingMessage
) -> None:
    try:
        if not access.allows(msg):
            await _reject(dispatcher, msg)
            return
        state = await dispatcher.handle_message(msg)
        logger.debug(
            "loop.update_done",
            chat_id=msg.chat_id,
            message_id=msg.message_id,
            state=state.value,
        )
    except Exception:
        logger.exception(
            "loop.update_failed", chat_id=msg.chat_id, message_id=msg.message_id
        )


async def run_main_loop(
    dispatcher: Dispatcher,
    messages: AsyncIterator[IncomingMessage],
    access: AccessPolicy,
) -> None:
    """Handle each incoming message in its own task until the source ends.

    Tasks are not serialized against each other; two replies racing into the
    same conversation both run and the store keeps whichever write lands last.
    """
    async with anyio.create_task_group() as tg:
        async for msg in messages:
            tg.start_soon(_run_update, dispatcher, access, msg)
