class BridgeError(RuntimeError):
    """Base class for failures scoped to one session or one tool invocation."""


class ProcessStartError(BridgeError):
    """Raised when an external process cannot be spawned."""


class DebuggerNotRespondingError(BridgeError):
    """Raised when a freshly spawned debugger never accepts a connection."""


class ToolInvocationError(BridgeError):
    """Raised when the analysis tool is missing or exits non-zero.

    The message carries the tool's raw combined output.
    """

    def __init__(self, message: str, output: str = "", returncode: int | None = None):
        super().__init__(message)
        self.output = output
        self.returncode = returncode
