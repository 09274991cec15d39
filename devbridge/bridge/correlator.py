import threading
from typing import Dict


class RequestCorrelator:
    """Hands out request ids and remembers which command each id was sent for.

    A reply only carries the numeric id; ``take_method`` recovers the command
    name exactly once.
    """

    def __init__(self, start: int = 0):
        self._lock = threading.Lock()
        self._last_id = start
        self._pending: Dict[int, str] = {}

    def next_id(self) -> int:
        with self._lock:
            self._last_id += 1
            return self._last_id

    def remember(self, request_id: int, method: str) -> None:
        with self._lock:
            self._pending[request_id] = method

    def issue(self, method: str) -> int:
        with self._lock:
            self._last_id += 1
            self._pending[self._last_id] = method
            return self._last_id

    def take_method(self, request_id) -> str:
        with self._lock:
            return self._pending.pop(request_id, "")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


# ids are unique across every debug connection served by this process
CORRELATOR = RequestCorrelator()
