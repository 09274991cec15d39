import asyncio
import socket
import sys

import pytest

from devbridge.bridge.errors import DebuggerNotRespondingError, ProcessStartError
from devbridge.bridge.registry import ProcessKind, ProcessRegistry, ProcessSlot, ProcessSpec, read_line

from .conftest import pid_exists

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _listener(port: int) -> ProcessSpec:
    code = (
        "import socket, time\n"
        "s = socket.socket()\n"
        "s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)\n"
        f"s.bind(('127.0.0.1', {port}))\n"
        "s.listen()\n"
        "time.sleep(60)\n"
    )
    return ProcessSpec(argv=[sys.executable, "-c", code], stdout=False, stderr=False)


async def test_start_replaces_previous_process():
    slot = ProcessSlot(ProcessKind.EXECUTABLE)
    first = await slot.start(ProcessSpec(argv=SLEEPER))
    second = await slot.start(ProcessSpec(argv=SLEEPER))
    try:
        assert slot.current() is second
        assert first.returncode is not None
        assert not pid_exists(first.pid)
        assert second.alive
    finally:
        await slot.stop()


async def test_concurrent_starts_leave_exactly_one_live_process():
    slot = ProcessSlot(ProcessKind.EXECUTABLE)

    handles = await asyncio.gather(*(slot.start(ProcessSpec(argv=SLEEPER)) for _ in range(5)))
    try:
        live = [h for h in handles if h.alive]
        assert len(live) == 1
        assert slot.current() is live[0]
        for h in handles:
            if h is not live[0]:
                assert h.returncode is not None
    finally:
        await slot.stop()


async def test_stop_is_idempotent():
    slot = ProcessSlot(ProcessKind.EXECUTABLE)
    handle = await slot.start(ProcessSpec(argv=SLEEPER))

    stopped = await asyncio.wait_for(slot.stop(), timeout=5)
    assert stopped is handle
    assert slot.current() is None

    assert await asyncio.wait_for(slot.stop(), timeout=5) is None
    assert await asyncio.wait_for(slot.stop(handle), timeout=5) is handle
    assert await asyncio.wait_for(handle.terminate(), timeout=5) == handle.returncode


async def test_stop_after_natural_exit():
    slot = ProcessSlot(ProcessKind.EXECUTABLE)
    handle = await slot.start(ProcessSpec(argv=[sys.executable, "-c", "pass"]))
    assert await handle.wait() == 0

    await asyncio.wait_for(slot.stop(handle), timeout=5)
    assert slot.current() is None


async def test_stop_with_old_handle_keeps_newer_occupant():
    slot = ProcessSlot(ProcessKind.EXECUTABLE)
    old = await slot.start(ProcessSpec(argv=SLEEPER))
    new = await slot.start(ProcessSpec(argv=SLEEPER))
    try:
        await slot.stop(old)
        assert slot.current() is new
        assert not slot.release(old)
    finally:
        await slot.stop()


async def test_spawn_failure_leaves_slot_empty(tmp_path):
    slot = ProcessSlot(ProcessKind.EXECUTABLE)

    with pytest.raises(ProcessStartError):
        await slot.start(ProcessSpec(argv=[str(tmp_path / "does-not-exist")]))
    assert slot.current() is None


async def test_debugger_not_listening_is_killed():
    registry = ProcessRegistry()
    port = _free_port()
    spec = ProcessSpec(argv=SLEEPER, stdout=False, stderr=False)

    with pytest.raises(DebuggerNotRespondingError):
        await registry.start_debugger(spec, port, timeout=0.5, interval=0.1)
    assert registry.debugger.current() is None


async def test_second_debugger_terminates_the_first():
    registry = ProcessRegistry()
    first_port, second_port = _free_port(), _free_port()

    first = await registry.start_debugger(_listener(first_port), first_port, timeout=5)
    second = await registry.start_debugger(_listener(second_port), second_port, timeout=5)
    try:
        assert registry.debugger.current() is second
        assert not pid_exists(first.pid)
    finally:
        await registry.shutdown()
    assert registry.debugger.current() is None
    assert not second.alive


async def test_language_server_slots_are_private_per_connection():
    registry = ProcessRegistry()
    a = registry.language_server_slot()
    b = registry.language_server_slot()
    first = await a.start(ProcessSpec(argv=SLEEPER, stdin=True))
    second = await b.start(ProcessSpec(argv=SLEEPER, stdin=True))

    assert first.alive and second.alive
    await registry.shutdown()
    assert not first.alive
    assert not second.alive


async def test_read_line_splits_oversized_lines_without_loss():
    stream = asyncio.StreamReader(limit=16)
    stream.feed_data(b"x" * 40 + b"END\nshort\ntail")
    stream.feed_eof()

    pieces = []
    while True:
        piece = await read_line(stream)
        if not piece:
            break
        pieces.append(piece)

    assert b"".join(pieces) == b"x" * 40 + b"END\nshort\ntail"
    assert b"short\n" in pieces
    assert pieces[-1] == b"tail"
