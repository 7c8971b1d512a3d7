"""Key-affine thread executor.

Work for one key always lands on the same single-thread executor, so it runs
in submission order without per-key locks. Different keys run in parallel.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from promoguard_engine.utils.hashing import shard_for

logger = logging.getLogger(__name__)


class KeyedExecutor:
    def __init__(self, workers: int = 4, name: str = "keyed"):
        self.workers = max(1, workers)
        self._executors = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-{i}")
            for i in range(self.workers)
        ]
        self._outstanding: set[Future] = set()
        self._lock = threading.Lock()

    def shard(self, key: str) -> int:
        return shard_for(key, self.workers)

    def _done(self, future: Future) -> None:
        with self._lock:
            self._outstanding.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Keyed task failed", exc_info=future.exception())

    def submit(self, key: str, fn: Callable, *args, **kwargs) -> Future:
        future = self._executors[self.shard(key)].submit(fn, *args, **kwargs)
        with self._lock:
            self._outstanding.add(future)
        future.add_done_callback(self._done)
        return future

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for work submitted so far. Returns False if the timeout expired first."""
        with self._lock:
            pending = list(self._outstanding)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        for executor in self._executors:
            executor.shutdown(wait=wait)
