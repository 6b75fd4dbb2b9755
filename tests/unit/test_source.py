"""
tests/unit/test_source.py
Reconnecting line source driven by a scripted fake websocket.
"""
import asyncio

import pytest

from sniwatch.base.exceptions import ErrorCode
from sniwatch.stream.source import LineSource, SourceState
from tests.helpers import FakeConnection, FakeConnector, wait_for_condition


@pytest.mark.asyncio
async def test_delivers_lines_in_order_and_reconnects_without_replay():
    lines, errors = [], []
    connector = FakeConnector(
        FakeConnection(["one", "two"], error=ConnectionResetError("reset")),
        FakeConnection(["three"], hold=True),
    )
    source = LineSource("ws://appliance/api/ws/logs", lines.append, errors.append,
                        reconnect_delay=0.01, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: lines == ["one", "two", "three"])
    assert source.state is SourceState.OPEN
    assert len(errors) == 1
    assert errors[0].code is ErrorCode.STREAM_DROPPED
    assert source.connect_count == 2

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)
    assert source.state is SourceState.CLOSED
    assert connector.urls == ["ws://appliance/api/ws/logs"] * 2


@pytest.mark.asyncio
async def test_connect_failure_reports_and_retries():
    lines, errors = [], []
    connector = FakeConnector(OSError("refused"), FakeConnection(["hello"], hold=True))
    source = LineSource("ws://x", lines.append, errors.append, reconnect_delay=0.01, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: lines == ["hello"])
    assert [e.code for e in errors] == [ErrorCode.STREAM_CONNECT_FAILED]

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_peer_close_counts_as_drop():
    errors = []
    connector = FakeConnector(FakeConnection(["x"]))
    source = LineSource("ws://x", lambda line: None, errors.append, reconnect_delay=0.01, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: source.connect_count == 2)
    assert len(errors) == 1

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_close_interrupts_retry_delay():
    connector = FakeConnector(OSError("down"))
    source = LineSource("ws://x", lambda line: None, reconnect_delay=30.0, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: source.state is SourceState.RETRY_PENDING)
    await source.close()
    await asyncio.wait_for(task, timeout=1.0)
    assert source.state is SourceState.CLOSED
    assert source.error_count == 1


@pytest.mark.asyncio
async def test_frames_are_split_and_decoded():
    lines = []
    connector = FakeConnector(FakeConnection([b"caf\xc3\xa9", "a\nb\n\n", b"\xff"], hold=True))
    source = LineSource("ws://x", lines.append, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: len(lines) == 4)
    assert lines == ["café", "a", "b", "�"]

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_consumer_errors_do_not_kill_the_stream():
    received = []

    def consumer(line):
        if line == "bad":
            raise ValueError("boom")
        received.append(line)

    connector = FakeConnector(FakeConnection(["bad", "good"], hold=True))
    source = LineSource("ws://x", consumer, connect=connector)

    task = asyncio.create_task(source.run())
    await wait_for_condition(lambda: received == ["good"])
    assert source.error_count == 0

    await source.close()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_close_before_run():
    source = LineSource("ws://x", lambda line: None, connect=FakeConnector())
    await source.close()
    await asyncio.wait_for(source.run(), timeout=1.0)
    assert source.state is SourceState.CLOSED
