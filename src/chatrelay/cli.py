from __future__ import annotations

from functools import partial
from pathlib import Path

import anyio
import typer

from . import __version__
from .completion import OpenAICompletionProvider
from .config import ConfigError, RelaySettings, load_settings
from .dispatcher import Dispatcher, DispatcherConfig
from .errors import TransportError
from .logging import get_logger, setup_logging
from .loop import AccessPolicy, run_main_loop
from .store import ContextStore, RedisKeyValueStore
from .telegram import TelegramClient, TelegramTransport, poll_incoming

logger = get_logger(__name__)

app = typer.Typer(
    add_completion=False,
    help="Relay Telegram conversations to an OpenAI chat model.",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    _ = version


async def run_relay(settings: RelaySettings) -> None:
    kv = RedisKeyValueStore(settings.redis_url)
    bot = TelegramClient(settings.bot_token.get_secret_value())
    provider = OpenAICompletionProvider(
        settings.openai_api_key.get_secret_value(),
        base_url=settings.openai_base_url,
    )
    try:
        me = await bot.get_me()
        bot_id = int(me["id"])
        username = me.get("username")
        logger.info(
            "relay.starting",
            bot_id=bot_id,
            bot_username=username,
            model=settings.model,
            redis_url=settings.redis_url,
            allowed_chats=len(settings.allowed_chat_ids),
        )
        dispatcher = Dispatcher(
            DispatcherConfig(
                transport=TelegramTransport(bot),
                provider=provider,
                store=ContextStore(kv),
                bot_id=bot_id,
                bot_username=username if isinstance(username, str) else None,
                default_model=settings.model,
                model_variants=dict(settings.model_variants),
                system_prompt=settings.system_prompt,
                fragment_size=settings.fragment_size,
            )
        )
        await run_main_loop(
            dispatcher,
            poll_incoming(bot),
            AccessPolicy.from_ids(settings.allowed_chat_ids),
        )
    finally:
        await provider.close()
        await bot.close()
        await kv.close()


@app.command()
def run(
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to chatrelay.toml (defaults to ./.chatrelay or ~/.chatrelay).",
    ),
    debug: bool = typer.Option(False, "--debug", help="Log verbosely to the console."),
) -> None:
    """Start polling Telegram and relaying conversations."""
    setup_logging(debug=debug)
    try:
        settings = load_settings(config)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    try:
        anyio.run(partial(run_relay, settings))
    except TransportError as exc:
        logger.error("relay.startup_failed", error=str(exc))
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        logger.info("relay.stopped")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
