import pytest

from chatrelay.errors import MalformedDataError, StoreError
from chatrelay.model import (
    ContextId,
    ConversationContext,
    Turn,
    context_id_for,
    message_key_for,
)
from chatrelay.store import (
    ContextStore,
    RedisKeyValueStore,
    decode_context,
    encode_context,
)
from redis.exceptions import ConnectionError as RedisConnectionError
from tests.fakes import FakeKeyValueStore


def _context() -> ConversationContext:
    return ConversationContext.start("gpt-4", "you should be helpful", "hello").append(
        "assistant", "hi!"
    )


def test_identifiers_are_namespaced_by_chat() -> None:
    assert context_id_for(100, 55) == "ctx:100-55"
    assert message_key_for(100, 56) == "msgid:100-56"
    assert message_key_for(-100, 56) != message_key_for(100, 56)


def test_append_returns_new_context() -> None:
    base = ConversationContext.start("gpt-4", "sys", "hello")
    grown = base.append("assistant", "hey")

    assert len(base.turns) == 2
    assert grown.turns[-1] == Turn(role="assistant", content="hey")
    assert grown.model == "gpt-4"


def test_codec_uses_params_field() -> None:
    blob = encode_context(ConversationContext.start("gpt-4", "sys", "hello"))

    assert blob == (
        b'{"model":"gpt-4","params":[{"role":"system","content":"sys"},'
        b'{"role":"user","content":"hello"}]}'
    )


def test_decode_rejects_garbage() -> None:
    with pytest.raises(MalformedDataError):
        decode_context("{not json")
    with pytest.raises(MalformedDataError):
        decode_context('{"model": "x", "params": [{"role": "robot", "content": "hi"}]}')


@pytest.mark.anyio
async def test_persist_then_load_round_trips(store: ContextStore) -> None:
    context = _context()
    await store.persist_context(ContextId("ctx:1-2"), context)

    assert await store.load_context(ContextId("ctx:1-2")) == context


@pytest.mark.anyio
async def test_persist_overwrites(store: ContextStore) -> None:
    cid = ContextId("ctx:1-2")
    await store.persist_context(cid, ConversationContext.start("a", "sys", "one"))
    await store.persist_context(cid, _context())

    assert await store.load_context(cid) == _context()


@pytest.mark.anyio
async def test_load_missing_returns_none(store: ContextStore) -> None:
    assert await store.load_context(ContextId("ctx:404-1")) is None


@pytest.mark.anyio
async def test_corrupt_blob_loads_as_missing(
    kv: FakeKeyValueStore, store: ContextStore
) -> None:
    kv.data["context/ctx:1-2"] = '{"model": "gpt-4", "params": [{"role"'

    assert await store.load_context(ContextId("ctx:1-2")) is None


@pytest.mark.anyio
async def test_reads_blobs_from_older_deployments(
    kv: FakeKeyValueStore, store: ContextStore
) -> None:
    kv.data["context/ctx:1-2"] = (
        '{"params":[{"role":"system","content":"you should be helpful"},'
        '{"role":"user","content":"hello","name":"alice"}],"model":"gpt-4"}'
    )

    loaded = await store.load_context(ContextId("ctx:1-2"))

    assert loaded is not None
    assert loaded.turns[1] == Turn(role="user", content="hello")


@pytest.mark.anyio
async def test_link_then_resolve(store: ContextStore) -> None:
    await store.link_message(message_key_for(100, 56), ContextId("ctx:100-55"))

    assert await store.resolve_context(message_key_for(100, 56)) == "ctx:100-55"
    assert await store.resolve_context(message_key_for(100, 57)) is None


@pytest.mark.anyio
async def test_links_and_contexts_use_separate_namespaces(
    kv: FakeKeyValueStore, store: ContextStore
) -> None:
    await store.persist_context(ContextId("ctx:1-2"), _context())
    await store.link_message(message_key_for(1, 3), ContextId("ctx:1-2"))

    assert set(kv.data) == {"context/ctx:1-2", "link/msgid:1-3"}


class _FakeRedis:
    def __init__(self, *, fail: bool = False) -> None:
        self.data: dict[str, str | bytes] = {}
        self.fail = fail
        self.closed = False

    async def get(self, key: str) -> str | bytes | None:
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.data[key] = value
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_redis_store_get_and_set() -> None:
    client = _FakeRedis()
    kv = RedisKeyValueStore("redis://localhost:6379", client=client)  # type: ignore[arg-type]

    await kv.set("k", "v")

    assert await kv.get("k") == "v"
    assert await kv.get("missing") is None
    await kv.close()
    assert client.closed is False


@pytest.mark.anyio
async def test_redis_errors_become_store_errors() -> None:
    kv = RedisKeyValueStore(
        "redis://localhost:6379",
        client=_FakeRedis(fail=True),  # type: ignore[arg-type]
    )

    with pytest.raises(StoreError, match="connection refused"):
        await kv.set("k", "v")
    with pytest.raises(StoreError):
        await kv.get("k")


@pytest.mark.anyio
async def test_redis_store_decodes_raw_replies() -> None:
    client = _FakeRedis()
    client.data["link/msgid:1-3"] = b"ctx:1-2"
    kv = RedisKeyValueStore("redis://localhost:6379", client=client)  # type: ignore[arg-type]

    assert await kv.get("link/msgid:1-3") == "ctx:1-2"


@pytest.mark.anyio
async def test_non_utf8_blob_loads_as_missing() -> None:
    client = _FakeRedis()
    client.data["context/ctx:1-2"] = b'{"model":"gpt-4","params":[\xff\xfe'
    store = ContextStore(
        RedisKeyValueStore("redis://localhost:6379", client=client)  # type: ignore[arg-type]
    )

    assert await store.load_context(ContextId("ctx:1-2")) is None
