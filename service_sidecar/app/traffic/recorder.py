"""
Bounded in-memory log of recent requests.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional


@dataclass(frozen=True)
class TrafficLogEntry:
    timestamp: str
    method: str
    path: str
    status: int
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "durationMs": self.duration_ms,
        }


class TrafficRecorder:
    """Ring buffer of completed requests, oldest evicted first.

    Paths are stored without their query string; API keys and search terms
    travel in queries and must not end up in the log.
    """

    def __init__(self, max_entries: int = 200, verbose: bool = False):
        self._entries: Deque[TrafficLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._verbose = verbose

    def record(
        self,
        method: str,
        path: str,
        status: int,
        duration_ms: float,
        timestamp: Optional[datetime] = None,
    ) -> TrafficLogEntry:
        when = timestamp or datetime.now(timezone.utc)
        entry = TrafficLogEntry(
            timestamp=when.isoformat().replace("+00:00", "Z"),
            method=method.upper(),
            path=path.split("?", 1)[0].split("#", 1)[0],
            status=status,
            duration_ms=round(duration_ms, 2),
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> List[TrafficLogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    @property
    def verbose(self) -> bool:
        return self._verbose

    def set_verbose(self, enabled: bool) -> bool:
        with self._lock:
            self._verbose = enabled
        return enabled

    def toggle_verbose(self) -> bool:
        with self._lock:
            self._verbose = not self._verbose
            return self._verbose

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
