"""Constants shared across modules."""
from __future__ import annotations

from enum import Enum


class ConsumeMode(str, Enum):
    BATCHED = "BATCHED"
    AUTO_ACK = "AUTO_ACK"


NEWLINE_DIAGNOSTIC = "message contains newlines: {}"
PARSE_ERROR_DIAGNOSTIC = "parse error: {}"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130
