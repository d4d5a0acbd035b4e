"""Shed load from the most crowded task nesting depth."""

from collections import defaultdict
from typing import Dict, List, Sequence

from node_oom_guard.policies.base import WorkerKillingPolicy, newest_worker
from node_oom_guard.worker import Worker


class GroupByDepthWorkerKillingPolicy(WorkerKillingPolicy):
    """
    Kill from the depth level with the most live workers.

    Workers are grouped by their task's depth. The largest group is the
    target; ties on size go to the deeper group, since nested work is cheaper
    to re-derive than its ancestors. The newest worker in the target is
    killed. Groups are rebuilt on every call.
    """

    def _select(self, workers: Sequence[Worker]) -> Worker:
        groups = self.group_by_depth(workers)
        target_depth = max(groups, key=lambda depth: (len(groups[depth]), depth))
        return newest_worker(groups[target_depth])

    @staticmethod
    def group_by_depth(workers: Sequence[Worker]) -> Dict[int, List[Worker]]:
        """Map task depth to the workers running at that depth."""
        groups: Dict[int, List[Worker]] = defaultdict(list)
        for worker in workers:
            groups[worker.depth].append(worker)
        return dict(groups)
