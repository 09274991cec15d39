import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .bridge.errors import ToolInvocationError
from .bridge.registry import REGISTRY
from .bridge.runner import run_tool
from .config import load_settings, settings
from .routes.debug_routes import router as debug_router
from .routes.file_routes import router as file_router
from .routes.run_routes import router as run_router
from .routes.tool_routes import router as tool_router
from .routes.ws_routes import router as ws_router

logger = logging.getLogger(__name__)

_env_path = Path(__file__).resolve().parent / ".env"
load_settings(_env_path)


def check_language_server() -> bool:
    binary = settings.lsp_command[0] if settings.lsp_command else ""
    if binary and shutil.which(binary):
        return True
    logger.warning("[startup] %r not found on PATH, LSP features will not be available", binary)
    return False


async def ensure_build_log() -> None:
    """Capture the build log through the analysis tool when it is missing."""
    if settings.build_log_path.exists():
        logger.info("[startup] build log already exists: %s", settings.build_log_path)
        return
    logger.info("[startup] build log not found, capturing build output for: %s", settings.root_dir)
    try:
        await run_tool(settings.tool_path, "json", cwd=settings.root_dir)
    except ToolInvocationError as e:
        logger.warning("[startup] %s", e)
        logger.warning("[startup] some features may not work without a build log")
        return
    logger.info("[startup] build log captured successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[startup] root directory: %s", settings.root_dir)
    check_language_server()
    await ensure_build_log()
    yield
    await REGISTRY.shutdown()


app = FastAPI(title=settings.title, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(file_router)
app.include_router(tool_router)
app.include_router(run_router)
app.include_router(debug_router)
app.include_router(ws_router)
