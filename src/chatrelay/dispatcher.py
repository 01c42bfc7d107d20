"""Conversation dispatcher: classify updates and drive new/continue runs."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

from .chunker import FRAGMENT_SIZE, ReplyChunker
from .completion import CompletionProvider
from .errors import NotFoundError, RelayError, TransportError
from .logging import get_logger
from .model import (
    ContextId,
    ConversationContext,
    context_id_for,
    message_key_for,
)
from .store import ContextStore
from .transport import ChatTransport, IncomingMessage, RenderMode

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4-turbo-preview"
DEFAULT_VARIANTS: Mapping[str, str] = {"3": "gpt-3.5-turbo"}
SYSTEM_PROMPT = "you should be helpful"
COMMAND = "openai"
IGNORE_PREFIXES = ("''", "//")

NO_CONTEXT_TEXT = "No context found for this message."
FAILURE_TEXT = "Internal error, please try again later."
PLACEHOLDER_TEXT = "Waiting for reply from model `{model}`..."


class DispatchState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    CONTINUING = "continuing"
    DELIVERING = "delivering"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DispatcherConfig:
    transport: ChatTransport
    provider: CompletionProvider
    store: ContextStore
    bot_id: int
    bot_username: str | None = None
    default_model: str = DEFAULT_MODEL
    model_variants: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_VARIANTS))
    system_prompt: str = SYSTEM_PROMPT
    fragment_size: int = FRAGMENT_SIZE
    command: str = COMMAND

    def usage_text(self) -> str:
        commands = [f"/{self.command}"]
        commands.extend(f"/{self.command}{variant}" for variant in self.model_variants)
        return "Usage: " + " or ".join(f"{name} <text>" for name in commands)


ClassificationKind: TypeAlias = Literal["new", "continue", "usage", "ignore"]


@dataclass(frozen=True, slots=True)
class Classification:
    kind: ClassificationKind
    variant: str = ""
    payload: str | None = None


def build_command_re(
    command: str, variants: Mapping[str, str], bot_username: str | None
) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(v) for v in sorted(variants, key=len, reverse=True))
    variant = f"(?P<variant>{alternatives})?" if alternatives else "(?P<variant>)"
    mention = rf"(?:@{re.escape(bot_username)})?" if bot_username else r"(?:@\w+)?"
    return re.compile(
        rf"^/{re.escape(command)}{variant}{mention}(?:[ \n](?P<payload>.*))?$",
        re.DOTALL,
    )


def classify_message(
    msg: IncomingMessage,
    *,
    bot_id: int,
    command_re: re.Pattern[str],
    start_re: re.Pattern[str],
) -> Classification:
    text = msg.text
    if text is None:
        return Classification("ignore")
    match = command_re.match(text)
    if match is not None:
        payload = match.group("payload")
        if payload is None or not payload.strip():
            return Classification("usage")
        return Classification("new", variant=match.group("variant") or "", payload=payload)
    if start_re.match(text):
        return Classification("usage")
    if msg.reply_to_message_id is None or msg.reply_to_sender_id != bot_id:
        return Classification("ignore")
    if text.startswith(IGNORE_PREFIXES):
        return Classification("ignore")
    return Classification("continue", payload=text)


class Dispatcher:
    def __init__(self, cfg: DispatcherConfig) -> None:
        self._cfg = cfg
        self._command_re = build_command_re(
            cfg.command, cfg.model_variants, cfg.bot_username
        )
        self._start_re = build_command_re("start", {}, cfg.bot_username)
        self._chunker = ReplyChunker(
            cfg.transport, cfg.store, fragment_size=cfg.fragment_size
        )

    @property
    def config(self) -> DispatcherConfig:
        return self._cfg

    def classify(self, msg: IncomingMessage) -> Classification:
        return classify_message(
            msg,
            bot_id=self._cfg.bot_id,
            command_re=self._command_re,
            start_re=self._start_re,
        )

    async def handle_message(self, msg: IncomingMessage) -> DispatchState:
        """Run one update to completion and return its terminal state."""
        classification = self.classify(msg)
        log = logger.bind(chat_id=msg.chat_id, message_id=msg.message_id)

        if classification.kind == "ignore":
            return DispatchState.IDLE

        if classification.kind == "usage":
            await self._reply(msg, self._cfg.usage_text())
            return DispatchState.IDLE

        state = DispatchState.IDLE
        try:
            if classification.kind == "new":
                state = DispatchState.STARTING
                context_id, context = self._start(msg, classification)
                log.info(
                    "dispatch.new_conversation",
                    sender=msg.sender_name,
                    chat=msg.chat_name,
                    context_id=context_id,
                    model=context.model,
                )
            else:
                state = DispatchState.CONTINUING
                context_id, context = await self._resume(msg, classification.payload or "")
                log.info(
                    "dispatch.continue_conversation",
                    sender=msg.sender_name,
                    chat=msg.chat_name,
                    context_id=context_id,
                    turns=len(context.turns),
                )
            state = DispatchState.DELIVERING
            await self._complete_and_deliver(msg, context_id, context)
        except NotFoundError as exc:
            log.info("dispatch.no_context", state=state.value, error=str(exc))
            await self._reply(msg, NO_CONTEXT_TEXT)
            return DispatchState.FAILED
        except RelayError as exc:
            log.error(
                "dispatch.failed",
                state=state.value,
                origin=exc.origin,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            await self._reply(msg, FAILURE_TEXT)
            return DispatchState.FAILED
        log.info("dispatch.delivered", context_id=context_id)
        return DispatchState.IDLE

    def _start(
        self, msg: IncomingMessage, classification: Classification
    ) -> tuple[ContextId, ConversationContext]:
        model = self._cfg.model_variants.get(classification.variant, self._cfg.default_model)
        context = ConversationContext.start(
            model, self._cfg.system_prompt, classification.payload or ""
        )
        return context_id_for(msg.chat_id, msg.message_id), context

    async def _resume(
        self, msg: IncomingMessage, text: str
    ) -> tuple[ContextId, ConversationContext]:
        if msg.reply_to_message_id is None:
            raise NotFoundError("message is not a reply")
        key = message_key_for(msg.chat_id, msg.reply_to_message_id)
        context_id = await self._cfg.store.resolve_context(key)
        if context_id is None:
            raise NotFoundError(f"no link for {key}")
        context = await self._cfg.store.load_context(context_id)
        if context is None:
            raise NotFoundError(f"no context stored for {context_id}")
        return context_id, context.append("user", text)

    async def _complete_and_deliver(
        self,
        msg: IncomingMessage,
        context_id: ContextId,
        context: ConversationContext,
    ) -> None:
        cfg = self._cfg
        placeholder = await cfg.transport.send_message(
            msg.chat_id,
            PLACEHOLDER_TEXT.format(model=context.model),
            reply_to=msg.message_id,
            render_mode=RenderMode.MARKDOWN,
        )
        # Persist before linking so the placeholder never points at nothing.
        await cfg.store.persist_context(context_id, context)
        await cfg.store.link_message(
            message_key_for(placeholder.chat_id, placeholder.message_id), context_id
        )

        reply = await cfg.provider.complete(context.model, context.turns)
        await self._chunker.deliver(placeholder, reply, context_id)
        await cfg.store.persist_context(context_id, context.append("assistant", reply))

    async def _reply(self, msg: IncomingMessage, text: str) -> None:
        try:
            await self._cfg.transport.send_message(
                msg.chat_id, text, reply_to=msg.message_id
            )
        except TransportError as exc:
            logger.warning(
                "dispatch.notice_failed",
                chat_id=msg.chat_id,
                message_id=msg.message_id,
                error=str(exc),
            )
