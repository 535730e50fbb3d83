"""
Request and storage counters for the status endpoint.

The collector is owned by whoever builds the service and handed to the pieces
that report into it; nothing here is module-global.
"""
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from sortedcontainers import SortedSet

MAX_RECENT = 10
MAX_HISTORY = 1000


@dataclass
class StatsSnapshot:
    started_at: float
    uptime: float
    total_requests: int
    total_cids_stored: int
    recent_cids: list[str] = field(default_factory=list)


class StatsCollector:
    timed_cids: SortedSet
    total_requests: int
    total_cids_stored: int

    def __init__(self, max_recent: int = MAX_RECENT, max_history: int = MAX_HISTORY,
                 clock: Callable[[], float] = time.time):
        self.max_recent = max_recent
        self.max_history = max(max_history, max_recent)
        self.clock = clock
        self.started_at = clock()
        self.total_requests = 0
        self.total_cids_stored = 0
        # (time, sequence, cid); sequence keeps same-second entries in arrival order
        self.timed_cids = SortedSet()
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def record_request(self):
        with self._lock:
            self.total_requests += 1

    def record_cid(self, cid: str):
        if not isinstance(cid, str) or not cid:
            raise ValueError(f"invalid CID passed to stats: {cid!r}")
        with self._lock:
            self.total_cids_stored += 1
            self.timed_cids.add((self.clock(), next(self._seq), cid))
            while len(self.timed_cids) > self.max_history:
                self.timed_cids.pop(0)

    def recent(self) -> list[str]:
        """Most recently stored CIDs, newest first."""
        with self._lock:
            newest = itertools.islice(reversed(self.timed_cids), self.max_recent)
            return [cid for _, _, cid in newest]

    def cids_since(self, since: float) -> list[str]:
        """CIDs stored at or after ``since``, oldest first."""
        with self._lock:
            return [cid for _, _, cid in self.timed_cids.irange((since, -1, ""))]

    def snapshot(self) -> StatsSnapshot:
        now = self.clock()
        recent = self.recent()
        with self._lock:
            return StatsSnapshot(
                started_at=self.started_at,
                uptime=now - self.started_at,
                total_requests=self.total_requests,
                total_cids_stored=self.total_cids_stored,
                recent_cids=recent,
            )
