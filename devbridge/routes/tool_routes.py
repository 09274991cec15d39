import logging
import shutil
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..bridge.errors import ToolInvocationError
from ..bridge.runner import run_tool
from ..config import CLEANUP_DIRS, settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analysis-tool"])


class ContentResp(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


class CompileReq(BaseModel):
    hooksFile: str = ""


class CleanupResp(BaseModel):
    success: bool
    message: str
    deletedDirs: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


async def _invoke(flag: str, *args: str) -> ContentResp:
    try:
        output = await run_tool(settings.tool_path, flag, *args, cwd=settings.root_dir)
    except ToolInvocationError as exc:
        logger.error("[tool] %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ContentResp(success=True, content=output)


@router.get("/pack-files", response_model=ContentResp)
async def pack_files() -> ContentResp:
    return await _invoke("pack-files")


@router.get("/pack-functions", response_model=ContentResp)
async def pack_functions() -> ContentResp:
    return await _invoke("pack-functions")


@router.get("/pack-packages", response_model=ContentResp)
async def pack_packages() -> ContentResp:
    return await _invoke("pack-packages")


@router.get("/callgraph", response_model=ContentResp)
async def callgraph() -> ContentResp:
    return await _invoke("callgraph")


@router.get("/workdir", response_model=ContentResp)
async def workdir() -> ContentResp:
    return await _invoke("workdir")


@router.post("/compile", response_model=ContentResp)
async def compile_hooks(body: CompileReq) -> ContentResp:
    if not body.hooksFile:
        raise HTTPException(status_code=400, detail="Hooks file is required for compile command")
    return await _invoke("compile", body.hooksFile)


@router.post("/cleanup", response_model=CleanupResp)
def cleanup() -> CleanupResp:
    deleted: List[str] = []
    errors: List[str] = []
    for name in CLEANUP_DIRS:
        path = settings.root_dir / name
        if not path.exists():
            logger.info("[cleanup] %s does not exist, skipping", name)
            continue
        try:
            shutil.rmtree(path)
        except OSError as e:
            errors.append(f"Failed to remove {name}: {e}")
            logger.error("[cleanup] failed to remove %s: %s", name, e)
        else:
            deleted.append(name)
            logger.info("[cleanup] removed %s", name)

    message = f"Cleaned: {', '.join(deleted)}" if deleted else "No build artifacts to clean"
    if errors:
        message += "\nErrors: " + "; ".join(errors)
    return CleanupResp(success=not errors, message=message, deletedDirs=deleted, errors=errors)
