"""Memory monitoring and pressure handling."""

from node_oom_guard.memory.monitor import (
    MemoryMonitor,
    MemorySnapshot,
    MemorySampler,
    PsutilMemorySampler,
    CgroupMemorySampler,
)
from node_oom_guard.memory.handlers import (
    LoggingCallback,
    WorkerKillingHandler,
)

__all__ = [
    "MemoryMonitor",
    "MemorySnapshot",
    "MemorySampler",
    "PsutilMemorySampler",
    "CgroupMemorySampler",
    "LoggingCallback",
    "WorkerKillingHandler",
]
