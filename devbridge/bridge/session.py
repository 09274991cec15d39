"""Plumbing shared by the three bridges: one browser socket, a set of worker
tasks, and a single cancellation signal that unwinds all of them."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Iterable, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class BridgeSession:
    def __init__(self, ws: WebSocket, name: str):
        self.ws = ws
        self.name = name
        self.cancelled = asyncio.Event()
        self._send_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    async def send_json(self, payload: Any) -> bool:
        """Best-effort notification; a dead browser never fails the session's teardown."""
        async with self._send_lock:
            try:
                await self.ws.send_json(payload)
                return True
            except Exception as e:
                logger.debug("[%s] dropped message to browser: %s", self.name, e)
                return False

    async def send_text(self, data: str) -> bool:
        async with self._send_lock:
            try:
                await self.ws.send_text(data)
                return True
            except Exception as e:
                logger.debug("[%s] dropped message to browser: %s", self.name, e)
                return False

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self.name}:{name}")
        self._tasks.append(task)
        return task

    def cancel(self) -> None:
        self.cancelled.set()

    async def wait_first(self, tasks: Optional[Iterable[asyncio.Task]] = None) -> Set[asyncio.Task]:
        """Block until any worker finishes or the session is cancelled."""
        watched = set(tasks if tasks is not None else self._tasks)
        cancel_wait = asyncio.create_task(self.cancelled.wait())
        try:
            done, _ = await asyncio.wait(watched | {cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
        return done - {cancel_wait}

    async def close(self) -> None:
        """Cancel every worker and wait for it to unwind. Idempotent."""
        self.cancel()
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.debug("[%s] worker %s ended with %r", self.name, task.get_name(), result)

    async def close_socket(self) -> None:
        try:
            await self.ws.close()
        except Exception as e:
            logger.debug("[%s] socket already closed: %s", self.name, e)
