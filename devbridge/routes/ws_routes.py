import logging

from fastapi import APIRouter, WebSocket

from ..bridge.lsp_bridge import LanguageServerBridge
from ..bridge.path_mapping import load_table
from ..bridge.registry import REGISTRY, ProcessSpec
from ..bridge.rpc_bridge import DebuggerBridge
from ..bridge.tee_bridge import ExecutableBridge
from ..config import DEFAULT_DEBUG_PORT, settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/lsp")
async def ws_lsp(ws: WebSocket):
    await ws.accept()
    logger.info("[lsp] websocket connection established")
    spec = ProcessSpec(
        argv=list(settings.lsp_command),
        cwd=str(settings.root_dir),
        stdin=True,
        stdout=True,
        stderr=False,
    )
    await LanguageServerBridge(ws, REGISTRY.language_server_slot(), spec).run()


@router.websocket("/ws/debug")
async def ws_debug(ws: WebSocket, port: int = DEFAULT_DEBUG_PORT):
    await ws.accept()
    table = load_table(settings.mappings_path)
    bridge = DebuggerBridge(ws, port, table, slot=REGISTRY.debugger)
    await bridge.run()


@router.websocket("/ws/run")
async def ws_run(ws: WebSocket):
    await ws.accept()
    logger.info("[run] websocket connection established")
    await ExecutableBridge(ws, REGISTRY.executable, settings.root_dir).run()
