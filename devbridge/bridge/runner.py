"""Single-shot process invocations: run-and-capture with a timeout, and the
analysis tool's ``<tool> --flag [arg]`` contract."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .. import config
from .errors import ProcessStartError, ToolInvocationError

logger = logging.getLogger(__name__)

TOOL_FLAGS = {
    "pack-files": "--pack-files",
    "pack-functions": "--pack-functions",
    "pack-packages": "--pack-packages",
    "callgraph": "--callgraph",
    "workdir": "--workdir",
    "compile": "--compile",
    "source-mappings": "--source-mappings",
    "json": "--json",
}


@dataclass
class RunResult:
    output: str
    returncode: Optional[int]
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


async def run_and_capture(argv: Sequence[str], cwd: Optional[Path] = None,
                          timeout: Optional[float] = config.DEFAULT_RUN_TIMEOUT,
                          kill_grace: float = config.KILL_GRACE) -> RunResult:
    """Run a command with stdout and stderr merged.

    On timeout the process is killed and whatever it printed so far is still
    returned; output that does not arrive within ``kill_grace`` is given up on.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise ProcessStartError(f"failed to start {argv[0]}: {e}") from e

    chunks: List[bytes] = []

    async def _collect():
        while True:
            chunk = await proc.stdout.read(4096)
            if not chunk:
                return
            chunks.append(chunk)

    collector = asyncio.create_task(_collect())
    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.info("[exec] %s exceeded %ss, killing pid %s", argv[0], timeout, proc.pid)
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    finally:
        done, _ = await asyncio.wait({collector}, timeout=kill_grace)
        if not done:
            collector.cancel()
        if proc.returncode is None:
            try:
                await asyncio.wait_for(proc.wait(), timeout=kill_grace)
            except asyncio.TimeoutError:
                logger.warning("[exec] pid %s still not reaped after kill", proc.pid)

    output = b"".join(chunks).decode("utf-8", errors="replace")
    return RunResult(output=output, returncode=proc.returncode, timed_out=timed_out)


async def run_tool(tool_path: Path, flag: str, *args: str, cwd: Optional[Path] = None) -> str:
    """Invoke the analysis tool and return its combined output.

    Raises ToolInvocationError when the tool is missing or exits non-zero;
    the message always contains the raw output.
    """
    if not Path(tool_path).exists():
        raise ToolInvocationError(f"Executable not found at: {tool_path}")
    argv = [str(tool_path), TOOL_FLAGS.get(flag, flag), *args]
    logger.info("[tool] executing: %s from directory: %s", " ".join(argv), cwd)
    try:
        result = await run_and_capture(argv, cwd=cwd, timeout=None)
    except ProcessStartError as e:
        raise ToolInvocationError(str(e)) from e
    if result.returncode != 0:
        raise ToolInvocationError(
            f"Failed to execute {Path(tool_path).name}: exit status {result.returncode}\n"
            f"Executable: {tool_path}\nWorking Dir: {cwd}\nOutput: {result.output}",
            output=result.output,
            returncode=result.returncode,
        )
    return result.output
