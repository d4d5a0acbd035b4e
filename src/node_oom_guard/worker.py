"""Worker and task descriptors consumed by the worker killing policies."""

import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TaskType(Enum):
    """Kinds of tasks a worker can be running."""
    NORMAL_TASK = "normal_task"
    ACTOR_CREATION_TASK = "actor_creation_task"
    ACTOR_TASK = "actor_task"
    DRIVER_TASK = "driver_task"


@dataclass(frozen=True)
class TaskSpec:
    """Read-only view of the task assigned to a worker."""
    task_type: TaskType
    max_retries: int = 0
    max_actor_restarts: int = 0
    depth: int = 1
    name: str = ""
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        if self.depth < 1:
            raise ValueError(f"Task depth must be >= 1, got {self.depth}")

    @classmethod
    def normal(cls, max_retries: int = 0, depth: int = 1, **kwargs) -> 'TaskSpec':
        return cls(TaskType.NORMAL_TASK, max_retries=max_retries, depth=depth, **kwargs)

    @classmethod
    def actor_creation(cls, max_actor_restarts: int = 0, depth: int = 1,
                       **kwargs) -> 'TaskSpec':
        return cls(TaskType.ACTOR_CREATION_TASK,
                   max_actor_restarts=max_actor_restarts, depth=depth, **kwargs)

    @classmethod
    def actor(cls, max_actor_restarts: int = 0, depth: int = 1, **kwargs) -> 'TaskSpec':
        return cls(TaskType.ACTOR_TASK,
                   max_actor_restarts=max_actor_restarts, depth=depth, **kwargs)


def is_retriable(task: TaskSpec) -> bool:
    """
    Check whether killing the task's worker is recoverable by a retry.

    Normal tasks are retriable with a non-zero retry budget and actor creation
    tasks with a non-zero restart budget (negative budgets mean unlimited).
    Actor tasks and any other kind are never retriable.
    """
    if task.task_type is TaskType.NORMAL_TASK:
        return task.max_retries != 0
    if task.task_type is TaskType.ACTOR_CREATION_TASK:
        return task.max_actor_restarts != 0
    return False


_assignment_counter = itertools.count(1)
_assignment_lock = threading.Lock()


def _next_assignment_seq() -> int:
    with _assignment_lock:
        return next(_assignment_counter)


@dataclass(eq=False)
class Worker:
    """
    A worker process holding one assigned task.

    Workers compare by identity. ``assignment_seq`` increases with every
    assignment in the process and orders workers for LIFO selection.
    """
    worker_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    pid: Optional[int] = None
    assigned_task: Optional[TaskSpec] = None
    assigned_time: float = 0.0
    assignment_seq: int = 0

    def __post_init__(self):
        if self.assigned_task is not None and self.assignment_seq == 0:
            self.assigned_time = self.assigned_time or time.time()
            self.assignment_seq = _next_assignment_seq()

    def assign_task(self, task: TaskSpec) -> None:
        """Assign a task and stamp the assignment order."""
        self.assigned_task = task
        self.assigned_time = time.time()
        self.assignment_seq = _next_assignment_seq()

    @property
    def task(self) -> TaskSpec:
        if self.assigned_task is None:
            raise ValueError(f"Worker {self.worker_id} has no assigned task")
        return self.assigned_task

    @property
    def depth(self) -> int:
        return self.task.depth

    @property
    def is_retriable(self) -> bool:
        return is_retriable(self.task)

    @classmethod
    def with_task(cls, task: TaskSpec, **kwargs) -> 'Worker':
        """Create a worker and assign it a task in one step."""
        worker = cls(**kwargs)
        worker.assign_task(task)
        return worker

    def __repr__(self) -> str:
        task = self.assigned_task
        kind = task.task_type.value if task else "idle"
        return (f"Worker(id={self.worker_id[:8]}, pid={self.pid}, task={kind}, "
                f"seq={self.assignment_seq})")
