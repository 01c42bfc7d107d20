"""Transport-agnostic chat contract consumed by the dispatcher and chunker."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol


class RenderMode(enum.Enum):
    MARKDOWN = "markdown"


@dataclass(frozen=True, slots=True)
class SentMessage:
    chat_id: int
    message_id: int


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    chat_id: int
    message_id: int
    text: str | None
    sender_id: int | None = None
    sender_name: str | None = None
    chat_name: str | None = None
    reply_to_message_id: int | None = None
    reply_to_sender_id: int | None = None


class ChatTransport(Protocol):
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to: int | None = None,
        render_mode: RenderMode | None = None,
    ) -> SentMessage: ...

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        render_mode: RenderMode | None = None,
    ) -> SentMessage: ...
