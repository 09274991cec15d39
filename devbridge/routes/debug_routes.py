import asyncio
import logging
from typing import List, Optional, Set

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..bridge.errors import BridgeError, ToolInvocationError
from ..bridge.path_mapping import load_table
from ..bridge.registry import REGISTRY, ProcessHandle, ProcessSpec, read_line
from ..bridge.rpc_bridge import substitute_path_args
from ..bridge.runner import run_tool
from ..config import DEFAULT_DEBUG_PORT, settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["debug"])

# keeps the stderr forwarders alive until the debugger exits
_STDERR_TASKS: Set[asyncio.Task] = set()


class DebugReq(BaseModel):
    executablePath: str = ""
    port: int = 0


class DebugResp(BaseModel):
    success: bool
    message: str
    port: int
    pid: int
    substitutePaths: List[str]
    connectCommand: str


def dlv_spec(exec_path: str, port: int) -> ProcessSpec:
    return ProcessSpec(
        argv=[
            settings.dlv_binary,
            "exec",
            exec_path,
            "--headless",
            f"--listen=:{port}",
            "--api-version=2",
            "--accept-multiclient",
        ],
        cwd=str(settings.root_dir),
        stdout=False,
        stderr=True,
    )


async def _log_stderr(handle: ProcessHandle) -> None:
    stream: Optional[asyncio.StreamReader] = handle.proc.stderr
    if stream is None:
        return
    while True:
        line = await read_line(stream)
        if not line:
            return
        logger.info("[dlv stderr] %s", line.decode(errors="ignore").rstrip())


async def _refresh_source_mappings() -> None:
    if not settings.tool_path.exists():
        return
    try:
        await run_tool(settings.tool_path, "source-mappings", cwd=settings.root_dir)
        logger.info("[dlv] source mappings generated")
    except ToolInvocationError as e:
        logger.warning("[dlv] source mappings generation failed: %s", e)


@router.post("/debug", response_model=DebugResp)
async def start_debug(body: DebugReq) -> DebugResp:
    if not body.executablePath:
        raise HTTPException(status_code=400, detail="Executable path is required")
    port = body.port or DEFAULT_DEBUG_PORT
    exec_path = settings.resolve_executable(body.executablePath)
    logger.info("[dlv] starting debug session for: %s", exec_path)
    if not exec_path.exists():
        raise HTTPException(status_code=400, detail=f"Executable not found at: {exec_path}")

    await _refresh_source_mappings()
    table = load_table(settings.mappings_path)
    substitute_paths = substitute_path_args(table)
    if substitute_paths:
        logger.info("[dlv] source mappings (for reference): %s", substitute_paths)

    spec = dlv_spec(str(exec_path), port)
    try:
        handle = await REGISTRY.start_debugger(spec, port)
    except BridgeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    task = asyncio.create_task(_log_stderr(handle))
    _STDERR_TASKS.add(task)
    task.add_done_callback(_STDERR_TASKS.discard)

    return DebugResp(
        success=True,
        message=f"Delve debugger started on port {port}",
        port=port,
        pid=handle.pid,
        substitutePaths=substitute_paths,
        connectCommand=f"dlv connect :{port}",
    )
