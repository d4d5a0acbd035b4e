#!/usr/bin/env python3
"""
Basic usage examples for Node OOM Guard.
"""

import time
import logging
from node_oom_guard import (
    MemoryMonitor,
    MemorySnapshot,
    MemorySampler,
    OomGuardConfig,
    TaskSpec,
    Worker,
    WorkerKillingHandler,
    LoggingCallback,
    create_worker_killing_policy,
)


class FakeNodeMemory(MemorySampler):
    """Node memory whose usage the example adjusts by hand."""

    def __init__(self, total: int, used: int):
        self.total = total
        self.used = used

    def sample(self) -> MemorySnapshot:
        return MemorySnapshot(self.total, self.used, self.total - self.used, time.time())


def example_system_memory():
    """Example: Read the current system memory snapshot."""
    print("\n=== System Memory Example ===")

    monitor = MemoryMonitor.from_config(OomGuardConfig(memory_monitor_refresh_ms=0))
    snapshot = monitor.get_memory_snapshot()
    print(snapshot)
    print(f"Above {monitor.usage_threshold:.0%} threshold: "
          f"{monitor.is_usage_above_threshold(snapshot)}")


def example_kill_order(policy_name: str):
    """Example: Full kill order of a worker pool under a policy."""
    print(f"\n=== Kill Order: {policy_name} ===")

    workers = [
        Worker.with_task(TaskSpec.actor(max_actor_restarts=7, name="actor method")),
        Worker.with_task(TaskSpec.actor_creation(max_actor_restarts=5, name="actor init")),
        Worker.with_task(TaskSpec.normal(max_retries=0, depth=2, name="load shard")),
        Worker.with_task(TaskSpec.normal(max_retries=11, depth=2, name="transform")),
        Worker.with_task(TaskSpec.normal(max_retries=3, depth=3, name="reduce")),
    ]
    policy = create_worker_killing_policy(policy_name)

    while workers:
        victim = policy.select_worker_to_kill(workers, None)
        task = victim.task
        print(f"  kill {task.name:<14} type={task.task_type.value:<20} "
              f"depth={task.depth} retriable={victim.is_retriable}")
        workers.remove(victim)


def example_node_manager():
    """Example: Monitor drives kills until memory pressure is relieved."""
    print("\n=== Node Manager Example ===")

    gb = 1024 ** 3
    memory = FakeNodeMemory(total=16 * gb, used=15 * gb)
    workers = [Worker.with_task(TaskSpec.normal(max_retries=1, depth=d)) for d in (1, 2, 2, 3)]

    def kill_worker(worker: Worker, reason: str) -> None:
        print(f"  {reason}")
        # Pretend the process exits immediately and releases 1 GB
        workers.remove(worker)
        memory.used -= gb
        handler.on_worker_exit(worker)

    handler = WorkerKillingHandler(
        policy=create_worker_killing_policy("group_by_depth"),
        get_workers=lambda: workers,
        kill_worker=kill_worker,
    )
    log_pressure = LoggingCallback()

    def on_tick(is_above: bool, snapshot: MemorySnapshot, threshold: float) -> None:
        log_pressure(is_above, snapshot, threshold)
        handler(is_above, snapshot, threshold)

    monitor = MemoryMonitor(usage_threshold=0.8, min_memory_free_bytes=-1,
                            refresh_interval_ms=20, callback=on_tick, sampler=memory)
    handler.monitor = monitor
    monitor.start()
    time.sleep(0.5)
    monitor.stop()

    print(f"Workers left: {len(workers)}, {memory.sample()}")


def main():
    """Run all examples."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    example_system_memory()
    example_kill_order("retriable_lifo")
    example_kill_order("group_by_depth")
    example_node_manager()

    print("\n=== All examples completed! ===")


if __name__ == "__main__":
    main()
