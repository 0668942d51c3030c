"""Pending acknowledgment window for the batched consume loop.

Acknowledgment is cumulative, so the window never holds more than the acker of the most
recently accepted delivery. Acking it with multiple=True settles every delivery accepted
since the previous flush, in receipt order.
"""
from __future__ import annotations

from amqpcli.app.ports.broker import Acker


class LogicInvariantViolation(RuntimeError):
    """The counter and the acker slot disagree; the window state can no longer be trusted."""


class PendingWindow:
    def __init__(self, batch_size: int) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._batch_size = batch_size
        self._count = 0
        self._latest_acker: Acker | None = None

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def count(self) -> int:
        return self._count

    @property
    def latest_acker(self) -> Acker | None:
        return self._latest_acker

    @property
    def pending(self) -> bool:
        return self._latest_acker is not None

    @property
    def full(self) -> bool:
        return self._count >= self._batch_size

    def add(self, acker: Acker) -> None:
        self._latest_acker = acker
        self._count += 1

    def take(self) -> Acker:
        """Hand over the latest acker and reset the window. Raises if nothing is pending."""
        acker = self._latest_acker
        if acker is None:
            raise LogicInvariantViolation(
                f"flush requested with count={self._count} but no pending acker"
            )
        self._latest_acker = None
        self._count = 0
        return acker
