"""Debugger bridge: browser commands <-> newline-delimited JSON-RPC over TCP.

File paths are rewritten on the way through: the browser speaks original
source paths, the debugger speaks instrumented ones.
"""
from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from .. import config
from .correlator import CORRELATOR, RequestCorrelator
from .path_mapping import PathTranslationTable
from .registry import ProcessSlot
from .session import BridgeSession
from .translator import translate

logger = logging.getLogger(__name__)

_EOF = object()

LOAD_CONFIG_VARS = {
    "FollowPointers": True,
    "MaxVariableRecurse": 1,
    "MaxStringLen": 64,
    "MaxArrayValues": 64,
    "MaxStructFields": -1,
}
LOAD_CONFIG_STACK = {
    "FollowPointers": False,
    "MaxVariableRecurse": 0,
    "MaxStringLen": 64,
    "MaxArrayValues": 0,
    "MaxStructFields": 0,
}
CURRENT_SCOPE = {"GoroutineID": -1, "Frame": 0}


class DebugCommand(BaseModel):
    command: str
    file: str = ""
    line: int = 0
    id: int = 0


class SessionState(str, Enum):
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    ACTIVE = "active"
    CLOSING = "closing"


def _command(name: str) -> Callable[[DebugCommand], tuple]:
    return lambda cmd: ("RPCServer.Command", {"name": name})


COMMANDS: Dict[str, Callable[[DebugCommand], tuple]] = {
    "continue": _command("continue"),
    "next": _command("next"),
    "step": _command("step"),
    "stepOut": _command("stepOut"),
    "halt": _command("halt"),
    "setBreakpoint": lambda cmd: (
        "RPCServer.CreateBreakpoint",
        {"Breakpoint": {"file": cmd.file, "line": cmd.line}},
    ),
    "clearBreakpoint": lambda cmd: ("RPCServer.ClearBreakpoint", {"Id": cmd.id}),
    "state": lambda cmd: ("RPCServer.State", {}),
    "listLocalVars": lambda cmd: (
        "RPCServer.ListLocalVars",
        {"Scope": dict(CURRENT_SCOPE), "Cfg": dict(LOAD_CONFIG_VARS)},
    ),
    "listFunctionArgs": lambda cmd: (
        "RPCServer.ListFunctionArgs",
        {"Scope": dict(CURRENT_SCOPE), "Cfg": dict(LOAD_CONFIG_VARS)},
    ),
    "stacktrace": lambda cmd: (
        "RPCServer.Stacktrace",
        {"Id": -1, "Depth": 50, "Full": False, "Cfg": dict(LOAD_CONFIG_STACK)},
    ),
    "stop": lambda cmd: ("RPCServer.Detach", {"Kill": True}),
    "detach": lambda cmd: ("RPCServer.Detach", {"Kill": False}),
}

# commands after which the browser session is over
DETACH_COMMANDS = {"stop", "detach"}


def build_request(cmd: DebugCommand, table: PathTranslationTable) -> Optional[Dict[str, Any]]:
    """Map a browser command onto a debugger RPC call (without an id); None if unknown."""
    builder = COMMANDS.get(cmd.command)
    if builder is None:
        return None
    method, params = builder(cmd)
    return {"method": method, "params": [translate(params, table.to_instrumented)]}


def encode_line(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8") + b"\n"


class DebuggerBridge:
    def __init__(self, ws: WebSocket, port: int, table: PathTranslationTable,
                 host: str = config.DEBUGGER_HOST,
                 correlator: RequestCorrelator = CORRELATOR,
                 slot: Optional[ProcessSlot] = None,
                 configure_timeout: float = config.DEBUGGER_CONFIGURE_TIMEOUT,
                 detach_grace: float = config.DEBUGGER_DETACH_GRACE):
        self.ws = ws
        self.port = port
        self.host = host
        self.table = table
        self.correlator = correlator
        self.slot = slot
        self.configure_timeout = configure_timeout
        self.detach_grace = detach_grace
        self.session = BridgeSession(ws, "dlv")
        self.state = SessionState.CONNECTING
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.replies: asyncio.Queue = asyncio.Queue(maxsize=64)
        self.detached_with: Optional[str] = None
        self.browser_gone = False

    def _enter(self, state: SessionState) -> None:
        logger.debug("[dlv] %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> None:
        logger.info("[dlv] connecting to debugger on port %d", self.port)
        try:
            self.reader, self.writer = await asyncio.open_connection(
                self.host, self.port, limit=config.STREAM_LIMIT)
        except OSError as e:
            logger.error("[dlv] failed to connect: %s", e)
            await self.session.send_json({"type": "error", "error": f"Failed to connect to dlv: {e}"})
            await self.session.close_socket()
            return

        try:
            self._enter(SessionState.CONFIGURING)
            await self.configure()
            self._enter(SessionState.ACTIVE)
            forward_task = self.session.spawn(self._forward_replies(), "forwarder")
            command_task = self.session.spawn(self._read_commands(), "commands")
            self.session.spawn(self._read_replies(), "reader")
            await self.session.wait_first([forward_task, command_task])
            if self.detached_with is not None:
                # let the detach reply reach the browser before tearing down
                await asyncio.wait({forward_task}, timeout=self.detach_grace)
        finally:
            await self.teardown()

    async def configure(self) -> None:
        rules = self.table.substitute_dirs()
        if not rules:
            return
        for from_dir, to_dir in rules:
            logger.info("[dlv] substitute-path %s -> %s", from_dir, to_dir)
        try:
            await self._round_trip("RPCServer.SetApiVersion", {"APIVersion": 2})
            reply = await self._round_trip(
                "RPCServer.SetSubstitutePath",
                {"Dir": [{"From": f, "To": t} for f, t in rules]},
            )
            logger.info("[dlv] substitute path response: %s", reply)
        except (asyncio.TimeoutError, OSError, ValueError) as e:
            logger.warning("[dlv] configuring substitute paths failed: %s", e)

    async def _round_trip(self, method: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        request_id = self.correlator.next_id()
        self.writer.write(encode_line({"method": method, "params": [params], "id": request_id}))
        await self.writer.drain()
        line = await asyncio.wait_for(self.reader.readline(), timeout=self.configure_timeout)
        if not line:
            raise ConnectionResetError("debugger closed the connection while configuring")
        reply = json.loads(line)
        if not isinstance(reply, dict):
            raise ValueError(f"unexpected reply during configuration: {reply!r}")
        if reply.get("id") != request_id:
            logger.warning("[dlv] expected reply %s during configuration, got %s", request_id, reply.get("id"))
        return reply

    async def teardown(self) -> None:
        self._enter(SessionState.CLOSING)
        await self.session.close()
        if self.writer is not None:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError as e:
                logger.debug("[dlv] socket close: %s", e)
        if self.detached_with == "stop" and self.slot is not None:
            stopped = await self.slot.stop()
            if stopped is not None:
                logger.info("[dlv] debugger pid %s stopped after detach", stopped.pid)
        if self.detached_with is None and not self.browser_gone:
            await self.session.send_json({"type": "error", "error": "debugger connection closed"})
        await self.session.close_socket()

    async def _read_replies(self) -> None:
        try:
            while True:
                line = await self.reader.readline()
                if not line:
                    logger.info("[dlv] debugger closed the connection")
                    return
                if line.strip():
                    await self.replies.put(line)
        except (OSError, ValueError) as e:
            logger.warning("[dlv] error reading from debugger: %s", e)
        finally:
            # on teardown the forwarder is cancelled too, so a put could never complete
            if not self.session.cancelled.is_set():
                await self.replies.put(_EOF)

    async def _forward_replies(self) -> None:
        while True:
            line = await self.replies.get()
            if line is _EOF:
                return
            logger.debug("[dlv] raw response: %s", line.rstrip())
            try:
                reply = json.loads(line)
            except ValueError as e:
                logger.warning("[dlv] error parsing response: %s", e)
                continue
            if not isinstance(reply, dict):
                logger.warning("[dlv] ignoring non-object response: %r", reply)
                continue
            reply_id = reply.get("id")
            result = reply.get("result")
            if result is not None:
                result = translate(result, self.table.to_original)
            method = self.correlator.take_method(reply_id)
            await self.session.send_json({
                "type": "response",
                "id": reply_id,
                "method": method,
                "result": result,
                "error": reply.get("error"),
            })

    async def _read_commands(self) -> None:
        while True:
            try:
                raw = await self.ws.receive_text()
            except WebSocketDisconnect:
                logger.info("[dlv] browser disconnected")
                self.browser_gone = True
                return
            try:
                cmd = DebugCommand.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("[dlv] error parsing debug command: %s", e.errors()[:1])
                continue
            logger.info("[dlv] debug command: %s", cmd.command)
            request = build_request(cmd, self.table)
            if request is None:
                logger.warning("[dlv] unknown debug command: %s", cmd.command)
                continue
            request["id"] = self.correlator.issue(request["method"])
            try:
                self.writer.write(encode_line(request))
                await self.writer.drain()
            except OSError as e:
                logger.warning("[dlv] error writing to debugger: %s", e)
                self.correlator.take_method(request["id"])
                return
            if cmd.command in DETACH_COMMANDS:
                self.detached_with = cmd.command
                return


def substitute_path_args(table: PathTranslationTable) -> List[str]:
    return [f"{f}={t}" for f, t in table.substitute_dirs()]
