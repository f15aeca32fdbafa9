import threading
import time
from typing import Callable, Dict, Optional

from constants import CAPTURE_DEDUPE_WINDOW_SECONDS


class RecentHashWindow:
    """Content hashes accepted recently, keyed to the time they were accepted.

    Expired hashes are pruned lazily before every lookup rather than on a timer.
    """

    def __init__(
        self,
        window_seconds: float = CAPTURE_DEDUPE_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock or time.time
        self._accepted: Dict[str, float] = {}
        self._lock = threading.Lock()

    def prune(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, ts in self._accepted.items() if now - ts > self.window_seconds]
            for key in expired:
                del self._accepted[key]
        return len(expired)

    def seen_recently(self, content_hash: str) -> bool:
        self.prune()
        with self._lock:
            return content_hash in self._accepted

    def record(self, content_hash: str) -> None:
        with self._lock:
            self._accepted[content_hash] = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._accepted)
