"""Kill retriable workers first, newest first."""

from typing import Sequence

from node_oom_guard.policies.base import WorkerKillingPolicy, newest_worker
from node_oom_guard.worker import Worker


class RetriableLIFOWorkerKillingPolicy(WorkerKillingPolicy):
    """
    Prefer workers whose task can be retried.

    Retriable workers are always exhausted before any non-retriable worker is
    chosen. Within either group the most recently assigned worker goes first.
    """

    def _select(self, workers: Sequence[Worker]) -> Worker:
        retriable = [w for w in workers if w.is_retriable]
        if retriable:
            return newest_worker(retriable)
        return newest_worker(workers)
