import asyncio
import json
import sys

from devbridge.bridge.lsp_bridge import LanguageServerBridge, encode_frame, read_frame
from devbridge.bridge.registry import ProcessKind, ProcessSlot, ProcessSpec

ECHO_SERVER = r"""
import sys
inp, out = sys.stdin.buffer, sys.stdout.buffer
length = None
while True:
    line = inp.readline()
    if not line:
        break
    if line.lower().startswith(b"content-length:"):
        length = int(line.split(b":", 1)[1])
    elif line.strip() == b"" and length is not None:
        body = inp.read(length)
        out.write(b"Content-Length: %d\r\n\r\n" % len(body) + body)
        out.flush()
        length = None
"""


def _reader(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


def test_encode_frame_counts_bytes():
    body = '{"text":"héllo"}'.encode("utf-8")

    assert encode_frame(body) == b"Content-Length: %d\r\n\r\n" % len(body) + body


async def test_read_frame_sequence():
    data = (
        encode_frame(b'{"id":1}')
        + b"Content-Length: 8\r\nContent-Type: application/vscode-jsonrpc\r\n\r\n{\"id\":2}"
        + b"junk without header\r\n\r\n"
        + encode_frame(b'{"id":3}')
    )
    reader = _reader(data)

    assert await read_frame(reader) == b'{"id":1}'
    assert await read_frame(reader) == b'{"id":2}'
    assert await read_frame(reader) == b'{"id":3}'
    assert await read_frame(reader) is None


async def test_read_frame_truncated_body():
    assert await read_frame(_reader(b"Content-Length: 50\r\n\r\n{\"id\":")) is None


async def test_bridge_round_trip_and_teardown(tmp_path, fake_ws):
    script = tmp_path / "echo_lsp.py"
    script.write_text(ECHO_SERVER, encoding="utf-8")
    slot = ProcessSlot(ProcessKind.LANGUAGE_SERVER)
    spec = ProcessSpec(argv=[sys.executable, str(script)], stdin=True, stdout=True, stderr=False)
    bridge = LanguageServerBridge(fake_ws, slot, spec)

    run = asyncio.create_task(bridge.run())
    request = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"name": "ünïcode"}})
    fake_ws.push(request)

    echoed = await fake_ws.wait_for(lambda m: m == request)
    assert json.loads(echoed)["params"]["name"] == "ünïcode"

    fake_ws.disconnect()
    await asyncio.wait_for(run, timeout=5)

    assert bridge.handle.returncode is not None
    assert slot.current() is None
    assert fake_ws.closed
    assert {"error": "language server connection closed"} not in fake_ws.sent


async def test_language_server_exit_ends_session(fake_ws):
    slot = ProcessSlot(ProcessKind.LANGUAGE_SERVER)
    spec = ProcessSpec(argv=[sys.executable, "-c", "pass"], stdin=True, stdout=True, stderr=False)
    bridge = LanguageServerBridge(fake_ws, slot, spec)

    await asyncio.wait_for(bridge.run(), timeout=5)

    assert bridge.handle.returncode is not None
    assert slot.current() is None
    assert fake_ws.sent[-1] == {"error": "language server connection closed"}
    assert fake_ws.closed


async def test_spawn_failure_reports_error(tmp_path, fake_ws):
    slot = ProcessSlot(ProcessKind.LANGUAGE_SERVER)
    spec = ProcessSpec(argv=[str(tmp_path / "no-gopls")], stdin=True)

    await asyncio.wait_for(LanguageServerBridge(fake_ws, slot, spec).run(), timeout=5)

    assert "error" in fake_ws.sent[0]
    assert fake_ws.closed
    assert slot.current() is None
