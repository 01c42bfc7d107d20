from collections.abc import Callable

import pytest

from chatrelay.dispatcher import Dispatcher, DispatcherConfig
from chatrelay.store import ContextStore
from tests.fakes import BOT_ID, FakeKeyValueStore, FakeTransport, ScriptedProvider


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def kv() -> FakeKeyValueStore:
    return FakeKeyValueStore()


@pytest.fixture
def store(kv: FakeKeyValueStore) -> ContextStore:
    return ContextStore(kv)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def make_dispatcher(
    transport: FakeTransport, provider: ScriptedProvider, store: ContextStore
) -> Callable[..., Dispatcher]:
    def _factory(**overrides) -> Dispatcher:
        cfg = DispatcherConfig(
            transport=overrides.pop("transport", transport),
            provider=overrides.pop("provider", provider),
            store=overrides.pop("store", store),
            bot_id=BOT_ID,
            bot_username="relay_bot",
            **overrides,
        )
        return Dispatcher(cfg)

    return _factory
