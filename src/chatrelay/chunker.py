"""Split completion text into fragments and deliver them as a reply chain."""

from __future__ import annotations

from .errors import TransportError
from .logging import get_logger
from .model import ContextId, message_key_for
from .store import ContextStore
from .transport import ChatTransport, RenderMode, SentMessage

logger = get_logger(__name__)

FRAGMENT_SIZE = 2048
FALLBACK_NOTICE = "Error while parsing markdown, fallback to plaintext: {error}"


def split_fragments(text: str, size: int = FRAGMENT_SIZE) -> list[str]:
    """Cut ``text`` into contiguous slices of at most ``size`` characters.

    The slices concatenate back to ``text`` exactly. Empty text yields no
    fragments.
    """
    if size <= 0:
        raise ValueError("fragment size must be positive")
    return [text[i : i + size] for i in range(0, len(text), size)]


class ReplyChunker:
    def __init__(
        self,
        transport: ChatTransport,
        store: ContextStore,
        *,
        fragment_size: int = FRAGMENT_SIZE,
    ) -> None:
        self._transport = transport
        self._store = store
        self._fragment_size = fragment_size

    async def deliver(
        self,
        placeholder: SentMessage,
        text: str,
        context_id: ContextId,
    ) -> list[SentMessage]:
        """Deliver ``text`` starting in ``placeholder`` and link every fragment.

        Fragment 0 replaces the placeholder; each later fragment replies to the
        one before it. A transport failure that survives the plain-text retry
        propagates and leaves the remaining fragments undelivered; fragments
        already sent stay linked.
        """
        fragments = split_fragments(text, self._fragment_size)
        delivered: list[SentMessage] = []
        previous = placeholder
        for index, fragment in enumerate(fragments):
            if index == 0:
                sent = await self._edit_fragment(placeholder, fragment)
            else:
                sent = await self._send_fragment(previous, fragment)
            await self._store.link_message(
                message_key_for(sent.chat_id, sent.message_id), context_id
            )
            logger.debug(
                "chunker.fragment_delivered",
                context_id=context_id,
                index=index,
                total=len(fragments),
                message_id=sent.message_id,
            )
            delivered.append(sent)
            previous = sent
        return delivered

    async def _edit_fragment(self, placeholder: SentMessage, fragment: str) -> SentMessage:
        try:
            return await self._transport.edit_message_text(
                placeholder.chat_id,
                placeholder.message_id,
                fragment,
                render_mode=RenderMode.MARKDOWN,
            )
        except TransportError as exc:
            render_error = exc
        sent = await self._transport.edit_message_text(
            placeholder.chat_id, placeholder.message_id, fragment
        )
        await self._notify_fallback(sent, render_error)
        return sent

    async def _send_fragment(self, previous: SentMessage, fragment: str) -> SentMessage:
        try:
            return await self._transport.send_message(
                previous.chat_id,
                fragment,
                reply_to=previous.message_id,
                render_mode=RenderMode.MARKDOWN,
            )
        except TransportError as exc:
            render_error = exc
        sent = await self._transport.send_message(
            previous.chat_id, fragment, reply_to=previous.message_id
        )
        await self._notify_fallback(sent, render_error)
        return sent

    async def _notify_fallback(self, sent: SentMessage, error: TransportError) -> None:
        logger.info(
            "chunker.render_fallback",
            chat_id=sent.chat_id,
            message_id=sent.message_id,
            error=str(error),
        )
        try:
            await self._transport.send_message(
                sent.chat_id, FALLBACK_NOTICE.format(error=error)
            )
        except TransportError as exc:
            logger.warning(
                "chunker.fallback_notice_failed",
                chat_id=sent.chat_id,
                error=str(exc),
            )
