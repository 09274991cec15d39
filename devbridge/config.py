import os
import shlex
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# ========= Static config =========
DEFAULT_DEBUG_PORT = 2345
DEBUGGER_HOST = "127.0.0.1"

# debugger readiness probe: 20 attempts, 100ms apart
DEBUGGER_READY_TIMEOUT = 2.0
DEBUGGER_READY_INTERVAL = 0.1
DEBUGGER_CONFIGURE_TIMEOUT = 5.0
DEBUGGER_DETACH_GRACE = 1.0

DEFAULT_RUN_TIMEOUT = 10.0
KILL_GRACE = 1.0

# StreamReader buffer limit for process pipes and the debugger socket
STREAM_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE = 2.0

BUILD_METADATA_DIR = "build-metadata"
DEBUG_BUILD_DIR = ".debug-build"
SOURCE_MAPPINGS_FILE = "source-mappings.json"
BUILD_LOG_FILE = "go-build.log"
CLEANUP_DIRS = (BUILD_METADATA_DIR, DEBUG_BUILD_DIR)

TRUTHY = ("1", "true", "True", "yes", "Yes", "on")


# ========= Runtime Configuration =========
class Settings:
    def __init__(self):
        self.root_dir: Path = Path(".").resolve()
        self.restrict_navigation: bool = False
        self.tool_path: Path = Path("../hc/hc").resolve()
        self.lsp_command: List[str] = ["gopls", "serve"]
        self.dlv_binary: str = "dlv"
        self.allow_origins: List[str] = ["http://localhost:9090"]
        self.title: str = "devbridge"
        self.port: int = 9090

    def load_from_env(self) -> "Settings":
        self.root_dir = Path(os.environ.get("DEVBRIDGE_ROOT", ".")).resolve()
        self.restrict_navigation = os.environ.get("DEVBRIDGE_RESTRICT_NAV", "0") in TRUTHY
        self.tool_path = Path(os.environ.get("DEVBRIDGE_TOOL", "../hc/hc")).resolve()
        self.lsp_command = shlex.split(os.environ.get("DEVBRIDGE_LSP_COMMAND", "gopls serve"))
        self.dlv_binary = os.environ.get("DEVBRIDGE_DLV", self.dlv_binary)
        raw_origins = os.environ.get("ALLOW_ORIGINS", "http://localhost:9090")
        self.allow_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
        self.title = os.environ.get("FASTAPI_TITLE", self.title)
        self.port = int(os.environ.get("PORT", self.port))
        return self

    @property
    def mappings_path(self) -> Path:
        return self.root_dir / BUILD_METADATA_DIR / SOURCE_MAPPINGS_FILE

    @property
    def build_log_path(self) -> Path:
        return self.root_dir / BUILD_METADATA_DIR / BUILD_LOG_FILE

    def resolve_path(self, raw: str) -> Path:
        """Resolve a browser-supplied path against the project root.

        Raises ValueError when navigation is restricted and the result
        escapes the root directory.
        """
        full = (self.root_dir / os.path.normpath(raw or ".")).resolve()
        if self.restrict_navigation and not full.is_relative_to(self.root_dir):
            raise ValueError("path outside root directory")
        return full

    def resolve_executable(self, raw: str) -> Path:
        path = Path(raw)
        if not path.is_absolute():
            path = self.root_dir / path
        return path


settings = Settings()


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load an optional .env file, then refresh the shared settings from the environment."""
    load_dotenv(dotenv_path=str(env_file) if env_file and env_file.exists() else None)
    return settings.load_from_env()
