"""
Node OOM Guard: memory monitoring and worker killing for task execution nodes.

A MemoryMonitor samples system memory and reports pressure on every tick; a
WorkerKillingPolicy decides which running worker to sacrifice when memory
runs low.
"""

from node_oom_guard.config import OomGuardConfig
from node_oom_guard.worker import TaskType, TaskSpec, Worker, is_retriable
from node_oom_guard.memory import (
    MemoryMonitor,
    MemorySnapshot,
    MemorySampler,
    PsutilMemorySampler,
    CgroupMemorySampler,
    LoggingCallback,
    WorkerKillingHandler,
)
from node_oom_guard.policies import (
    WorkerKillingPolicy,
    WorkerKillingPolicyType,
    RetriableLIFOWorkerKillingPolicy,
    GroupByDepthWorkerKillingPolicy,
    create_worker_killing_policy,
)

__version__ = "0.1.0"
__author__ = "Node OOM Guard Contributors"
__license__ = "Apache-2.0"

__all__ = [
    "OomGuardConfig",
    "TaskType",
    "TaskSpec",
    "Worker",
    "is_retriable",
    "MemoryMonitor",
    "MemorySnapshot",
    "MemorySampler",
    "PsutilMemorySampler",
    "CgroupMemorySampler",
    "LoggingCallback",
    "WorkerKillingHandler",
    "WorkerKillingPolicy",
    "WorkerKillingPolicyType",
    "RetriableLIFOWorkerKillingPolicy",
    "GroupByDepthWorkerKillingPolicy",
    "create_worker_killing_policy",
]
