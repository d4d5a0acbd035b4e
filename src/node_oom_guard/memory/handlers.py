"""Memory monitor callbacks."""

import time
import logging
import threading
from typing import Callable, Optional, Sequence

from node_oom_guard.memory.monitor import MemoryMonitor, MemorySnapshot
from node_oom_guard.policies.base import WorkerKillingPolicy
from node_oom_guard.worker import Worker


class LoggingCallback:
    """Log memory pressure transitions, repeating at most every min_interval."""

    def __init__(self,
                 logger: Optional[logging.Logger] = None,
                 min_interval: float = 60.0):
        self.logger = logger or logging.getLogger(__name__)
        self.min_interval = min_interval
        self._above = False
        self._last_log = 0.0

    def __call__(self, is_usage_above_threshold: bool,
                 snapshot: MemorySnapshot, usage_threshold: float) -> None:
        now = time.time()

        if not is_usage_above_threshold:
            if self._above:
                self.logger.info(f"Memory pressure relieved: {snapshot}")
            self._above = False
            return

        # Avoid spamming logs - only log on transition or after min_interval
        if self._above and now - self._last_log < self.min_interval:
            return

        self._above = True
        self._last_log = now
        self.logger.warning(
            f"Memory usage above threshold {usage_threshold:.2f}: {snapshot}")


class WorkerKillingHandler:
    """
    Kill one worker per tick while memory is above threshold.

    Only one victim is in flight at a time: after a kill is requested no
    further worker is selected until ``on_worker_exit`` reports the victim gone.
    """

    def __init__(self,
                 policy: WorkerKillingPolicy,
                 get_workers: Callable[[], Sequence[Worker]],
                 kill_worker: Callable[[Worker, str], None],
                 monitor: Optional[MemoryMonitor] = None,
                 logger: Optional[logging.Logger] = None):
        self.policy = policy
        self.get_workers = get_workers
        self.kill_worker = kill_worker
        self.monitor = monitor
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._eviction_target: Optional[Worker] = None

    @property
    def is_eviction_in_progress(self) -> bool:
        with self._lock:
            return self._eviction_target is not None

    @property
    def eviction_target(self) -> Optional[Worker]:
        with self._lock:
            return self._eviction_target

    def __call__(self, is_usage_above_threshold: bool,
                 snapshot: MemorySnapshot, usage_threshold: float) -> None:
        if not is_usage_above_threshold:
            return

        with self._lock:
            if self._eviction_target is not None:
                self.logger.info(
                    f"Memory usage above threshold, still waiting for "
                    f"{self._eviction_target!r} to exit")
                return

            workers = list(self.get_workers())
            victim = self.policy.select_worker_to_kill(workers, self.monitor)
            if victim is None:
                self.logger.warning(
                    f"Memory usage above threshold {usage_threshold:.2f} but there "
                    f"are no workers to kill: {snapshot}")
                return

            self._eviction_target = victim

        reason = self._kill_reason(victim, snapshot, usage_threshold)
        self.logger.warning(f"Killing {victim!r}: {reason}")
        self.kill_worker(victim, reason)

    def on_worker_exit(self, worker: Worker) -> None:
        """Clear the in-flight victim once its process has exited."""
        with self._lock:
            if self._eviction_target is not None and \
                    self._eviction_target.worker_id == worker.worker_id:
                self._eviction_target = None

    @staticmethod
    def _kill_reason(worker: Worker, snapshot: MemorySnapshot,
                     usage_threshold: float) -> str:
        task = worker.task
        return (f"Task {task.name or task.task_id} ({task.task_type.value}, "
                f"depth {task.depth}) was killed because the node was running low "
                f"on memory. {snapshot}, usage threshold {usage_threshold:.2f}.")
