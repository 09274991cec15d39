"""Monitored executable bridge: tee a program's stdout/stderr to the browser.

The session ends on whichever happens first: the program exits, the browser
sends ``stop``, or the browser goes away. One teardown routine handles all
three outcomes.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from .. import config
from .errors import ProcessStartError
from .registry import ProcessHandle, ProcessSlot, ProcessSpec, read_line
from .session import BridgeSession

logger = logging.getLogger(__name__)


class RunStart(BaseModel):
    command: str = ""
    executablePath: str = ""
    args: List[str] = []


class RunCommand(BaseModel):
    command: str = ""


class TerminalEvent(str, Enum):
    EXITED = "exited"
    STOPPED = "stopped"
    DISCONNECTED = "disconnected"


@dataclass
class Outcome:
    event: TerminalEvent
    exit_code: Optional[int] = None


class ExecutableBridge:
    def __init__(self, ws: WebSocket, slot: ProcessSlot, root_dir: Path,
                 output_grace: float = config.KILL_GRACE):
        self.ws = ws
        self.slot = slot
        self.root_dir = Path(root_dir)
        self.output_grace = output_grace
        self.session = BridgeSession(ws, "run")
        self.handle: Optional[ProcessHandle] = None
        self._pumps: List[asyncio.Task] = []

    async def _fail(self, message: str) -> None:
        logger.warning("[run] %s", message)
        await self.session.send_json({"type": "error", "error": message})
        await self.session.close_socket()

    async def _read_start(self) -> Optional[ProcessSpec]:
        try:
            raw = await self.ws.receive_text()
        except WebSocketDisconnect:
            logger.info("[run] browser left before starting a process")
            return None
        try:
            req = RunStart.model_validate_json(raw)
        except ValidationError:
            await self._fail("Invalid request format")
            return None
        if req.command != "start" or not req.executablePath:
            await self._fail("Invalid command or missing executable path")
            return None
        exec_path = Path(req.executablePath)
        if not exec_path.is_absolute():
            exec_path = self.root_dir / exec_path
        if not exec_path.exists():
            await self._fail(f"Executable not found: {exec_path}")
            return None
        return ProcessSpec(argv=[str(exec_path), *req.args], cwd=str(self.root_dir))

    async def run(self) -> None:
        spec = await self._read_start()
        if spec is None:
            return
        try:
            self.handle = await self.slot.start(spec)
        except ProcessStartError as e:
            await self._fail(f"Failed to start process: {e}")
            return

        await self.session.send_json({"type": "started", "pid": self.handle.pid})
        self._pumps = [
            self.session.spawn(self._pump(self.handle.proc.stdout, "stdout"), "stdout"),
            self.session.spawn(self._pump(self.handle.proc.stderr, "stderr"), "stderr"),
        ]
        waiter = self.session.spawn(self.handle.wait(), "waiter")
        commands = self.session.spawn(self._read_commands(), "commands")

        outcome = Outcome(TerminalEvent.DISCONNECTED)
        try:
            done = await self.session.wait_first([waiter, commands])
            if waiter in done:
                outcome = Outcome(TerminalEvent.EXITED, waiter.result())
            elif commands in done:
                outcome = Outcome(commands.result())
        finally:
            await self.finish(outcome)

    async def finish(self, outcome: Outcome) -> None:
        handle = self.handle
        if outcome.event is TerminalEvent.EXITED:
            # the pipes hit EOF right after exit; let the pumps flush what is left
            if self._pumps:
                await asyncio.wait(self._pumps, timeout=self.output_grace)
            self.session.cancel()
            await self.session.send_json({"type": "exited", "exitCode": outcome.exit_code})
            self.slot.release(handle)
            logger.info("[run] process exited with code: %s", outcome.exit_code)
        else:
            self.session.cancel()
            handle.send_kill()
            if outcome.event is TerminalEvent.STOPPED:
                logger.info("[run] received stop command, killed pid %s", handle.pid)
                await self.session.send_json({"type": "stopped", "message": "Process killed by user"})
            else:
                logger.info("[run] client disconnected, killed pid %s", handle.pid)
            try:
                await asyncio.wait_for(self.slot.stop(handle), timeout=self.output_grace)
            except asyncio.TimeoutError:
                logger.warning("[run] pid %s did not exit within %.1fs of kill", handle.pid, self.output_grace)
                self.slot.release(handle)
        await self.session.close()
        if outcome.event is not TerminalEvent.DISCONNECTED:
            await self.session.close_socket()

    async def _pump(self, stream: asyncio.StreamReader, kind: str) -> None:
        while True:
            line = await read_line(stream)
            if not line or self.session.cancelled.is_set():
                return
            await self.session.send_json({"type": kind, "output": line.decode("utf-8", errors="replace")})

    async def _read_commands(self) -> TerminalEvent:
        while True:
            try:
                raw = await self.ws.receive_text()
            except WebSocketDisconnect:
                return TerminalEvent.DISCONNECTED
            try:
                cmd = RunCommand.model_validate_json(raw)
            except ValidationError:
                logger.debug("[run] ignoring unparsable message: %r", raw)
                continue
            if cmd.command == "stop":
                return TerminalEvent.STOPPED
            logger.debug("[run] ignoring command: %s", cmd.command)
