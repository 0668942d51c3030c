"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from amqpcli.app.constants import NEWLINE_DIAGNOSTIC, PARSE_ERROR_DIAGNOSTIC

if TYPE_CHECKING:
    from amqpcli.app.ports.broker import Acker


@dataclass(frozen=True)
class Delivery:
    """One message received from the broker: raw body plus the handle that settles it."""

    payload: bytes
    acker: "Acker"


@dataclass(frozen=True)
class Accept:
    """Payload is valid single-line text and may be printed as-is."""

    text: str


@dataclass(frozen=True)
class RejectNewline:
    """Payload decoded but contains a newline, which would split it across output lines."""

    text: str

    @property
    def diagnostic(self) -> str:
        return NEWLINE_DIAGNOSTIC.format(self.text)


@dataclass(frozen=True)
class RejectParseError:
    """Payload is not valid UTF-8."""

    error: str

    @property
    def diagnostic(self) -> str:
        return PARSE_ERROR_DIAGNOSTIC.format(self.error)


ClassificationOutcome = Union[Accept, RejectNewline, RejectParseError]
