import logging
import os
from pathlib import Path
from typing import List

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..config import settings
from .tool_routes import ContentResp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])


class FileReq(BaseModel):
    filename: str
    content: str = ""


class ListResp(BaseModel):
    success: bool = True
    files: List[str]
    dir: str


def _resolve(raw: str, what: str = "filename") -> Path:
    try:
        return settings.resolve_path(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {what} - path outside root directory")


@router.post("/open", response_model=ContentResp)
def open_file(body: FileReq) -> ContentResp:
    if os.path.isabs(body.filename):
        # absolute paths let the editor open files from the build work directory
        full = Path(os.path.normpath(body.filename))
    else:
        full = _resolve(body.filename)
    logger.info("[files] opening %s", full)
    try:
        content = full.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Failed to read file: {e}")
    return ContentResp(success=True, content=content)


@router.post("/save", response_model=ContentResp)
def save_file(body: FileReq) -> ContentResp:
    full = _resolve(body.filename)
    logger.info("[files] saving %s (%d bytes)", body.filename, len(body.content))
    try:
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(body.content, encoding="utf-8")
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Failed to write file: {e}")
    return ContentResp(success=True)


@router.get("/list", response_model=ListResp)
def list_files(dir: str = ".") -> ListResp:
    full = _resolve(dir, "directory")
    try:
        entries = sorted(full.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Failed to read directory: {e}")

    files: List[str] = []
    if settings.restrict_navigation:
        if dir != "." and full != settings.root_dir:
            files.append("../")
    elif full != Path(full.anchor):
        files.append("../")
    files.extend(p.name + "/" for p in entries if p.is_dir())
    files.extend(p.name for p in entries if not p.is_dir())
    return ListResp(files=files, dir=dir)
