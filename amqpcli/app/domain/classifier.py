"""Line classifier: decides whether a payload can be emitted as exactly one output line."""
from __future__ import annotations

from amqpcli.app.domain.models import Accept, ClassificationOutcome, RejectNewline, RejectParseError


def classify(payload: bytes) -> ClassificationOutcome:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        return RejectParseError(error=str(exc))
    if "\n" in text:
        return RejectNewline(text=text)
    return Accept(text=text)
