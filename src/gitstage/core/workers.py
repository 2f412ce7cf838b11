"""Bounded worker pool with one FIFO lane per repository path."""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Deque, Dict

logger = logging.getLogger(__name__)

Job = Callable[[], None]


class LanePool:
    """Runs jobs off the calling thread, in submission order per lane.

    Different lanes (repositories) share at most ``max_workers`` threads and
    may run in parallel; jobs within one lane never overlap or reorder.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gitstage-worker")
        self._lock = threading.Lock()
        self._lanes: Dict[Path, Deque[Job]] = {}

    def submit(self, lane: Path, job: Job) -> None:
        with self._lock:
            pending = self._lanes.get(lane)
            if pending is not None:
                # Lane already draining; its worker will pick this up.
                pending.append(job)
                return
            self._lanes[lane] = deque([job])
        self._executor.submit(self._drain, lane)

    def _drain(self, lane: Path) -> None:
        while True:
            with self._lock:
                pending = self._lanes[lane]
                if not pending:
                    del self._lanes[lane]
                    return
                job = pending.popleft()
            try:
                job()
            except Exception:
                # Jobs report their own failures; this only keeps the lane alive.
                logger.exception("Unhandled error in worker job for %s", lane)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
