"""Process-wide slots holding at most one live external process per kind.

Starting a process in an occupied slot first terminates the previous one; the
swap happens under the slot's lock so two concurrent starts can never both
own the slot. The lock is never held while a session streams.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .. import config
from .errors import DebuggerNotRespondingError, ProcessStartError

logger = logging.getLogger(__name__)

PIPE = asyncio.subprocess.PIPE


class ProcessKind(str, Enum):
    LANGUAGE_SERVER = "language-server"
    DEBUGGER = "debugger"
    EXECUTABLE = "executable"


@dataclass
class ProcessSpec:
    argv: List[str]
    cwd: Optional[str] = None
    stdin: bool = False
    stdout: bool = True
    # False lets the child write straight to the server's own stderr
    stderr: bool = True

    def describe(self) -> str:
        return " ".join(self.argv)


@dataclass
class ProcessHandle:
    kind: ProcessKind
    proc: asyncio.subprocess.Process
    spec: ProcessSpec

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    @property
    def alive(self) -> bool:
        return self.proc.returncode is None

    def send_kill(self) -> None:
        if self.proc.returncode is not None:
            return
        try:
            self.proc.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        return await self.proc.wait()

    async def terminate(self, force: bool = True, grace: float = config.TERMINATE_GRACE) -> int:
        """Stop the process and wait for it. Safe to call any number of times."""
        if self.proc.returncode is not None:
            return self.proc.returncode
        if self.proc.stdin is not None and not self.proc.stdin.is_closing():
            self.proc.stdin.close()
        if force:
            self.send_kill()
        else:
            try:
                self.proc.terminate()
            except ProcessLookupError:
                pass
            try:
                return await asyncio.wait_for(self.proc.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("[%s] pid %s ignored SIGTERM, killing", self.kind.value, self.pid)
                self.send_kill()
        rc = await self.proc.wait()
        logger.info("[%s] pid %s terminated (rc=%s)", self.kind.value, self.pid, rc)
        return rc


async def spawn(kind: ProcessKind, spec: ProcessSpec) -> ProcessHandle:
    try:
        proc = await asyncio.create_subprocess_exec(
            *spec.argv,
            cwd=spec.cwd,
            stdin=PIPE if spec.stdin else asyncio.subprocess.DEVNULL,
            stdout=PIPE if spec.stdout else asyncio.subprocess.DEVNULL,
            stderr=PIPE if spec.stderr else None,
            limit=config.STREAM_LIMIT,
        )
    except (OSError, ValueError) as e:
        raise ProcessStartError(f"failed to start {spec.argv[0] if spec.argv else '<empty>'}: {e}") from e
    logger.info("[%s] started pid %s: %s (cwd=%s)", kind.value, proc.pid, spec.describe(), spec.cwd)
    return ProcessHandle(kind=kind, proc=proc, spec=spec)


async def read_line(stream: asyncio.StreamReader) -> bytes:
    """Next line from a pipe, newline included; b"" at end of stream.

    A line longer than the reader's limit comes back in pieces rather than
    being dropped.
    """
    try:
        return await stream.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        return await stream.readexactly(e.consumed)


ReadyCheck = Callable[[ProcessHandle], Awaitable[None]]


class ProcessSlot:
    def __init__(self, kind: ProcessKind):
        self.kind = kind
        self._lock = asyncio.Lock()
        self._handle: Optional[ProcessHandle] = None

    def current(self) -> Optional[ProcessHandle]:
        return self._handle

    async def start(self, spec: ProcessSpec, ready: Optional[ReadyCheck] = None) -> ProcessHandle:
        """Replace whatever occupies the slot with a freshly spawned process.

        On spawn or readiness failure the slot is left empty and no process
        from this call keeps running.
        """
        async with self._lock:
            previous, self._handle = self._handle, None
            if previous is not None:
                logger.info("[%s] replacing pid %s", self.kind.value, previous.pid)
                await previous.terminate()
            handle = await spawn(self.kind, spec)
            if ready is not None:
                try:
                    await ready(handle)
                except BaseException:
                    await handle.terminate()
                    raise
            self._handle = handle
            return handle

    async def stop(self, handle: Optional[ProcessHandle] = None) -> Optional[ProcessHandle]:
        """Terminate ``handle`` (default: the current occupant) and clear the slot if it still holds it.

        Returns the handle that was stopped, or None when there was nothing
        to stop. Stopping an already stopped handle is a no-op.
        """
        async with self._lock:
            target = handle or self._handle
            if target is None:
                return None
            if self._handle is target:
                self._handle = None
            await target.terminate()
        return target

    def release(self, handle: ProcessHandle) -> bool:
        """Clear the slot after ``handle`` exited on its own; never touches a newer occupant."""
        if self._handle is handle:
            self._handle = None
            return True
        return False


async def wait_for_port(host: str, port: int, timeout: float = config.DEBUGGER_READY_TIMEOUT,
                        interval: float = config.DEBUGGER_READY_INTERVAL,
                        handle: Optional[ProcessHandle] = None) -> bool:
    """Poll a TCP port until it accepts a connection or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        await asyncio.sleep(interval)
        if handle is not None and not handle.alive:
            return False
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=interval)
        except (OSError, asyncio.TimeoutError):
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
    return False


def debugger_ready_check(port: int, host: str = config.DEBUGGER_HOST,
                         timeout: float = config.DEBUGGER_READY_TIMEOUT,
                         interval: float = config.DEBUGGER_READY_INTERVAL) -> ReadyCheck:
    async def _check(handle: ProcessHandle) -> None:
        if not await wait_for_port(host, port, timeout=timeout, interval=interval, handle=handle):
            raise DebuggerNotRespondingError("dlv started but is not responding on the specified port")
        logger.info("[dlv] ready and listening on port %d", port)
    return _check


class ProcessRegistry:
    """The only cross-session mutable state: one debugger slot, one executable slot,
    and a private language-server slot per browser connection."""

    def __init__(self):
        self.debugger = ProcessSlot(ProcessKind.DEBUGGER)
        self.executable = ProcessSlot(ProcessKind.EXECUTABLE)
        self._language_servers: "weakref.WeakSet[ProcessSlot]" = weakref.WeakSet()

    def language_server_slot(self) -> ProcessSlot:
        slot = ProcessSlot(ProcessKind.LANGUAGE_SERVER)
        self._language_servers.add(slot)
        return slot

    async def start_debugger(self, spec: ProcessSpec, port: int, **probe) -> ProcessHandle:
        return await self.debugger.start(spec, ready=debugger_ready_check(port, **probe))

    async def shutdown(self) -> None:
        slots = [self.debugger, self.executable, *list(self._language_servers)]
        for slot in slots:
            stopped = await slot.stop()
            if stopped is not None:
                logger.info("[shutdown] stopped %s pid %s", slot.kind.value, stopped.pid)


REGISTRY = ProcessRegistry()
