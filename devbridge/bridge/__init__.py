from .errors import (
    BridgeError,
    DebuggerNotRespondingError,
    ProcessStartError,
    ToolInvocationError,
)
from .path_mapping import PathMapping, PathTranslationTable, load_table
from .translator import translate
from .correlator import RequestCorrelator
from .registry import ProcessHandle, ProcessKind, ProcessRegistry, ProcessSlot, ProcessSpec

__all__ = [
    "BridgeError",
    "DebuggerNotRespondingError",
    "ProcessStartError",
    "ToolInvocationError",
    "PathMapping",
    "PathTranslationTable",
    "load_table",
    "translate",
    "RequestCorrelator",
    "ProcessHandle",
    "ProcessKind",
    "ProcessRegistry",
    "ProcessSlot",
    "ProcessSpec",
]
