"""Unit tests for BatchedAckLoop: batch and idle flushes, error policies, ordering."""
from __future__ import annotations

import pytest

from amqpcli.app.application.batched_ack_loop import BatchedAckLoop
from amqpcli.app.domain.models import Delivery
from amqpcli.app.domain.pending_window import LogicInvariantViolation
from amqpcli.app.ports.broker import TransportError
from tests.fakes import IDLE, FakeAcker, ScriptExhausted

INVALID_UTF8 = b"\xff\xfe\xfd"


def _loop(channel, out, err, **kwargs) -> BatchedAckLoop:
    kwargs.setdefault("batch_size", 2)
    return BatchedAckLoop(channel, "lines", out=out, err=err, consumer_tag="cli", **kwargs)


@pytest.mark.asyncio
async def test_run_sets_prefetch_to_two_batches_before_consuming(make_channel, out, err):
    channel = make_channel([])
    loop = _loop(channel, out, err, batch_size=256)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.journal[:2] == [("prefetch", 512), ("consume", "lines")]
    assert channel.consume_calls == [("lines", "cli", False)]


@pytest.mark.asyncio
async def test_every_wait_uses_idle_timeout(make_channel, out, err):
    channel = make_channel([b"a", IDLE, b"b"])
    loop = _loop(channel, out, err, idle_timeout=0.25)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.stream.timeouts == [0.25, 0.25, 0.25, 0.25]


@pytest.mark.asyncio
async def test_two_valid_lines_printed_and_acked_once_cumulatively(make_channel, out, err):
    channel = make_channel([b"alpha", b"beta"])
    loop = _loop(channel, out, err, batch_size=2)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert out.getvalue() == b"alpha\nbeta\n"
    assert channel.acks == [("ack", 2, True)]
    assert channel.rejects == []
    assert loop.window.count == 0
    assert loop.window.latest_acker is None


@pytest.mark.asyncio
async def test_non_ascii_lines_written_as_received_utf8(make_channel, out, err):
    channel = make_channel(["日本".encode(), "東\n京".encode()])
    loop = _loop(channel, out, err, batch_size=1, newline_error_ack=True)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert out.getvalue() == "日本\n".encode()
    assert err.getvalue() == "message contains newlines: 東\n京\n".encode()
    assert channel.acks == [("ack", 1, True), ("ack", 2, True)]


@pytest.mark.asyncio
async def test_batch_flush_happens_before_next_delivery(make_channel, out, err):
    channel = make_channel([b"1", b"2", b"3", b"4"])
    loop = _loop(channel, out, err, batch_size=3)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    events = [entry for entry in channel.journal if entry[0] in ("deliver", "ack")]
    assert events == [
        ("deliver", 1),
        ("deliver", 2),
        ("deliver", 3),
        ("ack", 3, True),
        ("deliver", 4),
    ]
    assert loop.window.count == 1


@pytest.mark.asyncio
async def test_idle_timeout_flushes_single_pending_delivery(make_channel, out, err):
    channel = make_channel([b"only", IDLE])
    loop = _loop(channel, out, err, batch_size=256)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.acks == [("ack", 1, True)]
    assert loop.window.count == 0
    assert out.getvalue() == b"only\n"


@pytest.mark.asyncio
async def test_idle_timeout_without_pending_does_nothing(make_channel, out, err):
    channel = make_channel([IDLE, IDLE, b"x", IDLE, IDLE])
    loop = _loop(channel, out, err, batch_size=256)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.acks == [("ack", 1, True)]


@pytest.mark.asyncio
async def test_invalid_utf8_rejected_immediately_when_parse_error_ack_false(make_channel, out, err):
    channel = make_channel([INVALID_UTF8])
    loop = _loop(channel, out, err, parse_error_ack=False)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.rejects == [("reject", 1, False)]
    assert channel.acks == []
    assert out.getvalue() == b""
    assert err.getvalue().startswith(b"parse error: ")
    assert b"utf-8" in err.getvalue()
    assert loop.window.count == 0
    assert loop.window.latest_acker is None


@pytest.mark.asyncio
async def test_invalid_utf8_joins_window_when_parse_error_ack_true(make_channel, out, err):
    channel = make_channel([INVALID_UTF8, IDLE])
    loop = _loop(channel, out, err, batch_size=256, parse_error_ack=True)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.rejects == []
    assert channel.acks == [("ack", 1, True)]
    assert out.getvalue() == b""
    assert err.getvalue().startswith(b"parse error: ")


@pytest.mark.asyncio
async def test_newline_payload_becomes_pending_when_newline_error_ack_true(out, err):
    loop = _loop(None, out, err, batch_size=256, newline_error_ack=True)
    journal: list = []
    acker = FakeAcker(7, journal)

    await loop.on_delivery(Delivery(payload=b"foo\nbar", acker=acker))

    assert loop.window.latest_acker is acker
    assert loop.window.count == 1
    assert journal == []
    assert out.getvalue() == b""
    assert err.getvalue() == b"message contains newlines: foo\nbar\n"


@pytest.mark.asyncio
async def test_newline_payload_rejected_when_newline_error_ack_false(make_channel, out, err):
    channel = make_channel([b"foo\nbar"])
    loop = _loop(channel, out, err)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.rejects == [("reject", 1, False)]
    assert out.getvalue() == b""
    assert b"message contains newlines: foo\nbar" in err.getvalue()


@pytest.mark.asyncio
async def test_rejections_never_enter_the_window(make_channel, out, err):
    channel = make_channel([b"a", b"x\ny", INVALID_UTF8, b"b", b"c", IDLE])
    loop = _loop(channel, out, err, batch_size=2)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.rejects == [("reject", 2, False), ("reject", 3, False)]
    # a and b fill the first batch; c is flushed by the idle timeout.
    assert channel.acks == [("ack", 4, True), ("ack", 5, True)]
    assert out.getvalue() == b"a\nb\nc\n"


@pytest.mark.asyncio
async def test_all_rejected_batch_never_flushes(make_channel, out, err):
    channel = make_channel([INVALID_UTF8, INVALID_UTF8, INVALID_UTF8, IDLE])
    loop = _loop(channel, out, err, batch_size=2)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert channel.acks == []
    assert len(channel.rejects) == 3


@pytest.mark.asyncio
async def test_output_preserves_receipt_order(make_channel, out, err):
    payloads = [f"line-{i}".encode() for i in range(10)]
    script: list[bytes | None] = []
    for i, payload in enumerate(payloads):
        script.append(payload)
        if i % 3 == 0:
            script.append(b"bad\nline")
    channel = make_channel(script)
    loop = _loop(channel, out, err, batch_size=4)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert out.getvalue().splitlines() == payloads
    acked_tags = [entry[1] for entry in channel.acks]
    assert acked_tags == sorted(acked_tags)


@pytest.mark.asyncio
async def test_output_is_flushed_before_ack(make_channel, err):
    flushed_at: list[int] = []

    class RecordingOut:
        def __init__(self) -> None:
            self.lines: list[bytes] = []

        def write(self, data: bytes) -> int:
            self.lines.append(data)
            return len(data)

        def flush(self) -> None:
            flushed_at.append(len(channel.acks))

    channel = make_channel([b"a", b"b"])
    loop = _loop(channel, RecordingOut(), err, batch_size=2)

    with pytest.raises(ScriptExhausted):
        await loop.run()

    assert flushed_at == [0]
    assert len(channel.acks) == 1


@pytest.mark.asyncio
async def test_ack_failure_is_fatal(make_channel, out, err):
    channel = make_channel([b"a", b"b", b"c"], ack_fails_with=TransportError("channel gone"))
    loop = _loop(channel, out, err, batch_size=2)

    with pytest.raises(TransportError, match="channel gone"):
        await loop.run()

    assert out.getvalue() == b"a\nb\n"


@pytest.mark.asyncio
async def test_desynchronised_window_raises_invariant_violation(out, err):
    loop = _loop(None, out, err, batch_size=2)
    loop.window._count = 2

    with pytest.raises(LogicInvariantViolation):
        await loop._flush(reason="batch")


def test_non_positive_idle_timeout_rejected(make_channel, out, err):
    with pytest.raises(ValueError):
        _loop(make_channel(), out, err, idle_timeout=0)
