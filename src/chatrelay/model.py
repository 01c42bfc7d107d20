"""chatrelay domain model types (turns, conversations, identifiers)."""

from __future__ import annotations

from typing import Literal, NewType, TypeAlias

import msgspec

Role: TypeAlias = Literal["system", "user", "assistant"]

ContextId = NewType("ContextId", str)
MessageKey = NewType("MessageKey", str)


class Turn(msgspec.Struct, frozen=True):
    role: Role
    content: str


class ConversationContext(msgspec.Struct, frozen=True):
    model: str
    # Serialized as "params" to stay readable by older deployments.
    turns: tuple[Turn, ...] = msgspec.field(name="params")

    @classmethod
    def start(cls, model: str, system_prompt: str, text: str) -> ConversationContext:
        return cls(
            model=model,
            turns=(Turn(role="system", content=system_prompt), Turn(role="user", content=text)),
        )

    def append(self, role: Role, content: str) -> ConversationContext:
        return ConversationContext(
            model=self.model,
            turns=(*self.turns, Turn(role=role, content=content)),
        )


def context_id_for(chat_id: int, message_id: int) -> ContextId:
    return ContextId(f"ctx:{chat_id}-{message_id}")


def message_key_for(chat_id: int, message_id: int) -> MessageKey:
    return MessageKey(f"msgid:{chat_id}-{message_id}")
