from __future__ import annotations

import asyncio
import json
import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Any, Callable, List

import pytest
from fastapi import WebSocketDisconnect

from devbridge.config import settings

_DISCONNECT = object()


class FakeWebSocket:
    """In-memory stand-in for the browser side of a bridge."""

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: List[Any] = []
        self.closed = False
        self._changed = asyncio.Event()

    def push(self, message: Any) -> None:
        self.inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def disconnect(self) -> None:
        self.inbox.put_nowait(_DISCONNECT)

    async def receive_text(self) -> str:
        message = await self.inbox.get()
        if message is _DISCONNECT:
            self.inbox.put_nowait(_DISCONNECT)
            raise WebSocketDisconnect(code=1000)
        return message

    async def send_json(self, data: Any) -> None:
        if self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)
        self._changed.set()

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)
        self._changed.set()

    async def close(self) -> None:
        self.closed = True

    def events(self, kind: str) -> List[dict]:
        return [m for m in self.sent if isinstance(m, dict) and m.get("type") == kind]

    async def wait_for(self, predicate: Callable[[Any], bool], timeout: float = 5.0) -> Any:
        async def _wait():
            while True:
                for message in self.sent:
                    if predicate(message):
                        return message
                self._changed.clear()
                await self._changed.wait()
        return await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script runnable directly by path."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip(), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@pytest.fixture
def project_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    tool = write_script(tmp_path / "hc", """
        import os, sys
        if "--fail" in sys.argv or os.path.exists("FAIL"):
            print("boom: analysis failed")
            sys.exit(3)
        print("args=" + " ".join(sys.argv[1:]))
        print("cwd=" + os.getcwd())
    """)
    monkeypatch.setattr(settings, "root_dir", root.resolve())
    monkeypatch.setattr(settings, "tool_path", tool)
    monkeypatch.setattr(settings, "restrict_navigation", False)
    return root
