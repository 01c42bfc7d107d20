"""Error taxonomy shared by the dispatcher and its collaborators.

Each error carries an ``origin`` so callers can tell provider-side failures
from transport-side ones without inspecting the exception's shape.
"""

from __future__ import annotations

from typing import ClassVar, Literal, TypeAlias

ErrorOrigin: TypeAlias = Literal["provider", "transport", "store", "context"]


class RelayError(Exception):
    origin: ClassVar[ErrorOrigin]


class ProviderError(RelayError):
    """Completion call failed or returned an unusable result."""

    origin = "provider"


class TransportError(RelayError):
    """A chat send or edit failed, including rejected rich-text rendering."""

    origin = "transport"


class StoreError(RelayError):
    """The keyed store rejected a read or write."""

    origin = "store"


class NotFoundError(RelayError):
    """No conversation is linked to the referenced message."""

    origin = "context"


class MalformedDataError(RelayError):
    """A stored conversation blob could not be decoded."""

    origin = "context"
