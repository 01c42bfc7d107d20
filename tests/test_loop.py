from collections.abc import AsyncIterator, Callable

import anyio
import pytest

from chatrelay.dispatcher import Dispatcher
from chatrelay.loop import PERMISSION_DENIED_TEXT, AccessPolicy, run_main_loop
from chatrelay.model import ContextId
from chatrelay.store import ContextStore
from chatrelay.transport import IncomingMessage
from tests.fakes import FakeTransport, ScriptedProvider, incoming


async def _messages(*msgs: IncomingMessage) -> AsyncIterator[IncomingMessage]:
    for msg in msgs:
        yield msg


@pytest.mark.anyio
async def test_unlisted_chat_is_rejected(
    make_dispatcher: Callable[..., Dispatcher],
    transport: FakeTransport,
    provider: ScriptedProvider,
) -> None:
    access = AccessPolicy.from_ids([100])

    with anyio.fail_after(1):
        await run_main_loop(
            make_dispatcher(), _messages(incoming("/openai hi", chat_id=5)), access
        )

    assert [(c.chat_id, c.text) for c in transport.calls] == [(5, PERMISSION_DENIED_TEXT)]
    assert provider.calls == []


@pytest.mark.anyio
async def test_updates_run_independently(
    make_dispatcher: Callable[..., Dispatcher],
    store: ContextStore,
) -> None:
    class _Boom:
        async def complete(self, model, turns):
            raise RuntimeError("unexpected")

    access = AccessPolicy.from_ids([100, 200])
    broken = make_dispatcher(provider=_Boom())

    with anyio.fail_after(1):
        await run_main_loop(
            broken,
            _messages(
                incoming("/openai first", chat_id=100, message_id=1),
                incoming("/openai second", chat_id=200, message_id=2),
            ),
            access,
        )

    # both updates got as far as persisting their context despite the crash
    assert await store.load_context(ContextId("ctx:100-1")) is not None
    assert await store.load_context(ContextId("ctx:200-2")) is not None


@pytest.mark.anyio
async def test_allowed_chat_is_dispatched(
    make_dispatcher: Callable[..., Dispatcher],
    provider: ScriptedProvider,
) -> None:
    with anyio.fail_after(1):
        await run_main_loop(
            make_dispatcher(),
            _messages(incoming("/openai hi", chat_id=100)),
            AccessPolicy.from_ids([100]),
        )

    assert len(provider.calls) == 1
