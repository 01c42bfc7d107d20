from __future__ import annotations

from typing import Any

from ..errors import TransportError
from ..transport import RenderMode, SentMessage
from .client import BotClient, TelegramApiError
from .render import render_markdown


def _prepare(text: str, render_mode: RenderMode | None) -> tuple[str, list[dict[str, Any]] | None]:
    if render_mode is not RenderMode.MARKDOWN:
        return text, None
    try:
        rendered, entities = render_markdown(text)
    except Exception as exc:  # noqa: BLE001
        raise TransportError(f"markdown rendering failed: {exc}") from exc
    if not rendered.strip():
        raise TransportError("markdown rendered to empty text")
    return rendered, entities


def _sent_from_result(result: dict[str, Any], *, chat_id: int, method: str) -> SentMessage:
    message_id = result.get("message_id")
    if not isinstance(message_id, int):
        raise TelegramApiError(method, "result has no message_id")
    chat = result.get("chat")
    result_chat_id = chat.get("id") if isinstance(chat, dict) else None
    return SentMessage(
        chat_id=result_chat_id if isinstance(result_chat_id, int) else chat_id,
        message_id=message_id,
    )


class TelegramTransport:
    """`ChatTransport` over the Telegram Bot API.

    Markdown is rendered locally into message entities; a rendering problem
    or an entity set Telegram rejects surfaces as `TransportError` so callers
    can retry as plain text.
    """

    def __init__(self, bot: BotClient) -> None:
        self._bot = bot

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: int | None = None,
        render_mode: RenderMode | None = None,
    ) -> SentMessage:
        body, entities = _prepare(text, render_mode)
        result = await self._bot.send_message(
            chat_id=chat_id,
            text=body,
            reply_to_message_id=reply_to,
            entities=entities,
        )
        return _sent_from_result(result, chat_id=chat_id, method="sendMessage")

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        render_mode: RenderMode | None = None,
    ) -> SentMessage:
        body, entities = _prepare(text, render_mode)
        result = await self._bot.edit_message_text(
            chat_id=chat_id,
            message_id=message_id,
            text=body,
            entities=entities,
        )
        return _sent_from_result(result, chat_id=chat_id, method="editMessageText")
