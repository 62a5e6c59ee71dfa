from __future__ import annotations

import asyncio

import pytest

from wagateway.util import json as bufferjson
from wagateway.util.asyncio import Debouncer
from wagateway.util.events import EventBus
from wagateway.util.timestamps import to_timestamp


@pytest.mark.asyncio
async def test_debouncer_coalesces_bursts() -> None:
    runs = 0

    async def fn() -> None:
        nonlocal runs
        runs += 1

    d = Debouncer(0.05, fn)
    for _ in range(5):
        d.schedule()
    assert d.pending
    await asyncio.sleep(0.15)

    assert runs == 1
    assert not d.pending


@pytest.mark.asyncio
async def test_debouncer_flush_runs_now_and_cancel_drops() -> None:
    runs = 0

    async def fn() -> None:
        nonlocal runs
        runs += 1

    d = Debouncer(10, fn)
    d.schedule()
    await d.flush()
    assert runs == 1
    assert not d.pending

    d.schedule()
    await d.cancel()
    assert runs == 1


@pytest.mark.asyncio
async def test_debouncer_runs_never_overlap() -> None:
    active = 0
    peak = 0

    async def fn() -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.05)
        active -= 1

    d = Debouncer(0.01, fn)
    d.schedule()
    await asyncio.sleep(0.03)  # first run is now inside fn()
    await d.flush()

    assert peak == 1


@pytest.mark.asyncio
async def test_event_bus_isolates_failing_listener() -> None:
    bus = EventBus(name="test")
    seen = []

    def broken(payload):
        raise RuntimeError("boom")

    async def ok(payload):
        seen.append(payload)

    bus.on("x", broken)
    bus.on("x", ok)

    assert await bus.emit("x", 1) is True
    assert seen == [1]
    assert await bus.emit("y", 1) is False

    bus.off("x", ok)
    assert bus.listener_count("x") == 1


def test_buffer_json_round_trip() -> None:
    data = {"key": b"\x00\xff", "nested": [{"type": "Buffer", "other": 1}]}

    text = bufferjson.dumps(data)

    assert '"type": "Buffer"' in text
    assert bufferjson.loads(text) == data


def test_to_timestamp() -> None:
    assert to_timestamp(1700000000) == 1700000000
    assert to_timestamp("1700000000") == 1700000000
    assert to_timestamp({"low": 5, "high": 0}) == 5
    assert to_timestamp(None) == 0
    assert to_timestamp("soon") == 0


def test_to_timestamp_truncates_fractional_strings() -> None:
    assert to_timestamp("1700000000.5") == 1700000000
    assert to_timestamp(" 1700000000.0 ") == 1700000000
    assert to_timestamp("inf") == 0
    assert to_timestamp("nan", default=7) == 7
