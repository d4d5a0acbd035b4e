"""Base class for worker killing policies."""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Sequence

from node_oom_guard.worker import Worker

if TYPE_CHECKING:
    from node_oom_guard.memory.monitor import MemoryMonitor


logger = logging.getLogger(__name__)


def newest_worker(workers: Sequence[Worker]) -> Worker:
    """Return the most recently assigned worker (LIFO)."""
    return max(workers, key=lambda w: w.assignment_seq)


class WorkerKillingPolicy(ABC):
    """
    Choose which worker to kill to relieve memory pressure.

    Policies are stateless: each call looks only at the workers passed in,
    so a caller that removes the victim and calls again walks a full kill order.
    """

    def select_worker_to_kill(self,
                              workers: Sequence[Worker],
                              monitor: Optional['MemoryMonitor'] = None
                              ) -> Optional[Worker]:
        """
        Select a worker to kill.

        Args:
            workers: Live workers, each with an assigned task; not modified
            monitor: Only used to log the current memory snapshot

        Returns:
            One of ``workers``, or None when there is nothing to kill
        """
        if not workers:
            return None

        assert len({w.worker_id for w in workers}) == len(workers), \
            "Duplicate workers passed to worker killing policy"

        victim = self._select(workers)

        if monitor is not None and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{type(self).__name__} selected {victim!r} out of "
                         f"{len(workers)} workers; {monitor.get_memory_snapshot()}")
        return victim

    @abstractmethod
    def _select(self, workers: Sequence[Worker]) -> Worker:
        """Pick a victim from a non-empty worker sequence."""
        pass
