"""Worker killing policies for relieving memory pressure."""

from enum import Enum
from typing import Union

from node_oom_guard.policies.base import WorkerKillingPolicy, newest_worker
from node_oom_guard.policies.retriable_lifo import RetriableLIFOWorkerKillingPolicy
from node_oom_guard.policies.group_by_depth import GroupByDepthWorkerKillingPolicy


class WorkerKillingPolicyType(Enum):
    """Available worker killing policies."""
    RETRIABLE_LIFO = "retriable_lifo"
    GROUP_BY_DEPTH = "group_by_depth"


_POLICIES = {
    WorkerKillingPolicyType.RETRIABLE_LIFO: RetriableLIFOWorkerKillingPolicy,
    WorkerKillingPolicyType.GROUP_BY_DEPTH: GroupByDepthWorkerKillingPolicy,
}


def create_worker_killing_policy(
        kind: Union[str, WorkerKillingPolicyType]) -> WorkerKillingPolicy:
    """Create the policy named by ``kind`` (enum member or its string value)."""
    try:
        policy_type = WorkerKillingPolicyType(kind)
    except ValueError:
        valid = ", ".join(t.value for t in WorkerKillingPolicyType)
        raise ValueError(
            f"Unknown worker killing policy {kind!r}; expected one of: {valid}") from None
    return _POLICIES[policy_type]()


__all__ = [
    "WorkerKillingPolicy",
    "WorkerKillingPolicyType",
    "RetriableLIFOWorkerKillingPolicy",
    "GroupByDepthWorkerKillingPolicy",
    "create_worker_killing_policy",
    "newest_worker",
]
