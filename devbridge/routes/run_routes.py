import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..bridge.errors import ProcessStartError
from ..bridge.registry import REGISTRY
from ..bridge.runner import RunResult, run_and_capture
from ..config import DEFAULT_RUN_TIMEOUT, settings
from .tool_routes import ContentResp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["run"])


class RunExecutableReq(BaseModel):
    executablePath: str = ""
    timeout: float = 0


class StopResp(BaseModel):
    success: bool
    message: str


def format_run_output(result: RunResult, timeout: float) -> str:
    output = result.output
    if result.timed_out:
        if not output:
            return f"[Process killed after {timeout:g} seconds timeout - no output captured]"
        return f"{output}\n\n[Process killed after {timeout:g} seconds timeout]"
    if not output:
        output = "(no output)"
    if result.returncode:
        output = f"{output}\n\nProcess exited with: exit status {result.returncode}"
    return output


@router.post("/run-executable", response_model=ContentResp)
async def run_executable(body: RunExecutableReq) -> ContentResp:
    if not body.executablePath:
        raise HTTPException(status_code=400, detail="Executable path is required")
    timeout = body.timeout if body.timeout > 0 else DEFAULT_RUN_TIMEOUT
    exec_path = settings.resolve_executable(body.executablePath)
    logger.info("[run] running executable: %s (timeout: %gs)", exec_path, timeout)
    if not exec_path.exists():
        raise HTTPException(status_code=400, detail=f"Executable not found at: {exec_path}")

    try:
        result = await run_and_capture([str(exec_path)], cwd=settings.root_dir, timeout=timeout)
    except ProcessStartError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ContentResp(success=True, content=format_run_output(result, timeout))


@router.post("/stop-process", response_model=StopResp)
async def stop_process() -> StopResp:
    stopped = await REGISTRY.executable.stop()
    if stopped is None:
        return StopResp(success=True, message="No process is currently running")
    logger.info("[run] killed process (pid: %d)", stopped.pid)
    return StopResp(success=True, message=f"Process {stopped.pid} killed")
