from __future__ import annotations

import pytest

from amqpcli.app.domain.pending_window import LogicInvariantViolation, PendingWindow
from tests.fakes import FakeAcker


def test_new_window_is_empty():
    window = PendingWindow(4)

    assert window.count == 0
    assert window.latest_acker is None
    assert window.pending is False
    assert window.full is False


def test_add_replaces_latest_acker_and_counts():
    journal: list = []
    first, second = FakeAcker(1, journal), FakeAcker(2, journal)
    window = PendingWindow(4)

    window.add(first)
    window.add(second)

    assert window.latest_acker is second
    assert window.count == 2
    assert window.full is False


def test_full_at_batch_size():
    window = PendingWindow(2)
    window.add(FakeAcker(1, []))
    window.add(FakeAcker(2, []))

    assert window.full is True


def test_take_returns_latest_and_resets():
    last = FakeAcker(3, [])
    window = PendingWindow(8)
    window.add(FakeAcker(1, []))
    window.add(last)

    assert window.take() is last
    assert window.count == 0
    assert window.latest_acker is None
    assert window.pending is False


def test_take_without_acker_is_an_invariant_violation():
    window = PendingWindow(2)

    with pytest.raises(LogicInvariantViolation, match="no pending acker"):
        window.take()


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        PendingWindow(0)
