from __future__ import annotations

from typing import Protocol

import msgspec
import redis.asyncio as redis_async
from redis.exceptions import RedisError

from .errors import MalformedDataError, StoreError
from .logging import get_logger
from .model import ContextId, ConversationContext, MessageKey

logger = get_logger(__name__)

CONTEXT_NAMESPACE = "context/"
LINK_NAMESPACE = "link/"

_ENCODER = msgspec.json.Encoder()
_DECODER = msgspec.json.Decoder(ConversationContext)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def close(self) -> None: ...


class RedisKeyValueStore:
    def __init__(
        self,
        url: str,
        *,
        client: redis_async.Redis | None = None,
    ) -> None:
        self._url = url
        # raw replies; undecodable bytes surface later as malformed JSON
        self._client = client or redis_async.from_url(url)
        self._owns_client = client is None

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            raise StoreError(f"redis get {key!r} failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client.set(key, value)
        except RedisError as exc:
            raise StoreError(f"redis set {key!r} failed: {exc}") from exc

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def encode_context(context: ConversationContext) -> bytes:
    return _ENCODER.encode(context)


def decode_context(blob: str | bytes) -> ConversationContext:
    try:
        return _DECODER.decode(blob)
    except msgspec.DecodeError as exc:
        raise MalformedDataError(str(exc)) from exc


class ContextStore:
    """Conversation records and message links over a keyed store.

    Context records and message links live in separate key namespaces, so a
    link can never overwrite a conversation or the other way round. There is
    no caching and no read-modify-write atomicity: concurrent writers to the
    same context race and the last write wins.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    @staticmethod
    def _context_key(context_id: ContextId) -> str:
        return f"{CONTEXT_NAMESPACE}{context_id}"

    @staticmethod
    def _link_key(message_key: MessageKey) -> str:
        return f"{LINK_NAMESPACE}{message_key}"

    async def persist_context(
        self, context_id: ContextId, context: ConversationContext
    ) -> None:
        logger.debug(
            "store.persist_context",
            context_id=context_id,
            model=context.model,
            turns=len(context.turns),
        )
        blob = encode_context(context).decode("utf-8")
        await self._kv.set(self._context_key(context_id), blob)

    async def load_context(self, context_id: ContextId) -> ConversationContext | None:
        blob = await self._kv.get(self._context_key(context_id))
        if blob is None:
            return None
        try:
            return decode_context(blob)
        except MalformedDataError as exc:
            logger.warning(
                "store.context_malformed",
                context_id=context_id,
                error=str(exc),
            )
            return None

    async def link_message(self, message_key: MessageKey, context_id: ContextId) -> None:
        logger.debug("store.link_message", message_key=message_key, context_id=context_id)
        await self._kv.set(self._link_key(message_key), context_id)

    async def resolve_context(self, message_key: MessageKey) -> ContextId | None:
        value = await self._kv.get(self._link_key(message_key))
        if not value:
            return None
        return ContextId(value)
