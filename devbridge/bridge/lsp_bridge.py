"""Language server bridge: browser messages <-> ``Content-Length`` framed stdio."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from .errors import ProcessStartError
from .registry import ProcessHandle, ProcessSlot, ProcessSpec
from .session import BridgeSession

logger = logging.getLogger(__name__)

HEADER_PREFIX = b"content-length:"


def encode_frame(body: bytes) -> bytes:
    return b"Content-Length: %d\r\n\r\n" % len(body) + body


async def read_frame(reader: asyncio.StreamReader) -> Optional[bytes]:
    """Read one framed message body; None at end of stream.

    Header blocks without a Content-Length are skipped.
    """
    content_length: Optional[int] = None
    while True:
        line = await reader.readline()
        if not line:
            return None
        stripped = line.strip()
        if stripped:
            if stripped.lower().startswith(HEADER_PREFIX):
                try:
                    content_length = int(stripped[len(HEADER_PREFIX):].strip())
                except ValueError:
                    logger.warning("[lsp] bad header from language server: %r", stripped)
                    content_length = None
            continue
        if content_length is None:
            continue
        try:
            return await reader.readexactly(content_length)
        except asyncio.IncompleteReadError:
            logger.warning("[lsp] language server closed mid-message")
            return None


class LanguageServerBridge:
    def __init__(self, ws: WebSocket, slot: ProcessSlot, spec: ProcessSpec):
        self.ws = ws
        self.slot = slot
        self.spec = spec
        self.session = BridgeSession(ws, "lsp")
        self.handle: Optional[ProcessHandle] = None
        self.browser_gone = False

    async def run(self) -> None:
        try:
            self.handle = await self.slot.start(self.spec)
        except ProcessStartError as e:
            logger.error("[lsp] %s", e)
            await self.session.send_json({"error": str(e)})
            await self.session.close_socket()
            return

        self.session.spawn(self._browser_to_process(), "browser->process")
        self.session.spawn(self._process_to_browser(), "process->browser")
        try:
            await self.session.wait_first()
        finally:
            await self.teardown()

    async def teardown(self) -> None:
        await self.session.close()
        if self.handle is not None:
            await self.slot.stop(self.handle)
            logger.info("[lsp] language server process terminated")
        if not self.browser_gone:
            await self.session.send_json({"error": "language server connection closed"})
        await self.session.close_socket()

    async def _browser_to_process(self) -> None:
        stdin = self.handle.proc.stdin
        while True:
            try:
                message = await self.ws.receive_text()
            except WebSocketDisconnect:
                logger.info("[lsp] browser disconnected")
                self.browser_gone = True
                return
            try:
                stdin.write(encode_frame(message.encode("utf-8")))
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.warning("[lsp] error writing to language server: %s", e)
                return

    async def _process_to_browser(self) -> None:
        stdout = self.handle.proc.stdout
        while True:
            body = await read_frame(stdout)
            if body is None:
                logger.info("[lsp] language server closed its output")
                return
            if not await self.session.send_text(body.decode("utf-8", errors="replace")):
                self.browser_gone = True
                return
