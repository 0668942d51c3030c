from __future__ import annotations

import io

import pytest

from tests.fakes import FakeChannel, FakeConnection, FakeConnector


@pytest.fixture()
def out() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture()
def err() -> io.BytesIO:
    return io.BytesIO()


@pytest.fixture()
def make_channel():
    def _make(script: list[bytes | None] | None = None, **kwargs) -> FakeChannel:
        return FakeChannel(script, **kwargs)

    return _make


@pytest.fixture()
def make_connector():
    def _make(channel: FakeChannel | None = None, *, failures: int = 0) -> FakeConnector:
        return FakeConnector(FakeConnection(channel or FakeChannel()), failures=failures)

    return _make
