"""Memory monitoring and pressure detection."""

import logging
import os
import time
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import psutil

from node_oom_guard.config import OomGuardConfig, config as default_config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemorySnapshot:
    """System memory usage at one point in time."""
    total_bytes: int
    used_bytes: int
    free_bytes: int
    timestamp: float

    @classmethod
    def empty(cls) -> 'MemorySnapshot':
        """Zeroed snapshot reported when memory could not be read."""
        return cls(total_bytes=0, used_bytes=0, free_bytes=0, timestamp=time.time())

    @property
    def used_fraction(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes

    @property
    def used_gb(self) -> float:
        return self.used_bytes / (1024 ** 3)

    @property
    def free_gb(self) -> float:
        return self.free_bytes / (1024 ** 3)

    @property
    def total_gb(self) -> float:
        return self.total_bytes / (1024 ** 3)

    def __str__(self) -> str:
        return (f"Memory: {self.used_fraction * 100:.1f}% used "
                f"({self.used_gb:.2f}/{self.total_gb:.2f} GB, "
                f"{self.free_gb:.2f} GB free)")


MemoryCallback = Callable[[bool, MemorySnapshot, float], None]


class MemorySampler(ABC):
    """Source of memory snapshots."""

    @abstractmethod
    def sample(self) -> MemorySnapshot:
        """Read current memory usage."""
        pass


class PsutilMemorySampler(MemorySampler):
    """Read system-wide memory through psutil."""

    def sample(self) -> MemorySnapshot:
        mem = psutil.virtual_memory()
        # Reclaimable page cache counts as free
        return MemorySnapshot(
            total_bytes=mem.total,
            used_bytes=mem.total - mem.available,
            free_bytes=mem.available,
            timestamp=time.time()
        )


class CgroupMemorySampler(MemorySampler):
    """
    Read memory from the process cgroup when it is memory limited.

    Supports cgroup v2 (``memory.max`` / ``memory.current``) and v1
    (``memory/memory.limit_in_bytes`` / ``memory/memory.usage_in_bytes``).
    Inactive file cache from ``memory.stat`` counts as free, as it does in
    the psutil view. Without an effective limit the system-wide psutil view
    is used.
    """

    V2_FILES = ("memory.max", "memory.current", "memory.stat", "inactive_file")
    V1_FILES = (os.path.join("memory", "memory.limit_in_bytes"),
                os.path.join("memory", "memory.usage_in_bytes"),
                os.path.join("memory", "memory.stat"),
                "total_inactive_file")

    def __init__(self, root: str = "/sys/fs/cgroup",
                 fallback: Optional[MemorySampler] = None):
        self.root = root
        self.fallback = fallback or PsutilMemorySampler()

    def sample(self) -> MemorySnapshot:
        system = self.fallback.sample()
        cgroup = self._read_cgroup()
        if cgroup is None:
            return system

        limit, current, inactive_file = cgroup
        if system.total_bytes > 0 and limit >= system.total_bytes:
            return system

        used = max(current - inactive_file, 0)
        return MemorySnapshot(
            total_bytes=limit,
            used_bytes=used,
            free_bytes=max(limit - used, 0),
            timestamp=system.timestamp
        )

    def _read_cgroup(self) -> Optional[Tuple[int, int, int]]:
        for limit_file, usage_file, stat_file, inactive_key in (self.V2_FILES,
                                                                self.V1_FILES):
            limit_path = os.path.join(self.root, limit_file)
            usage_path = os.path.join(self.root, usage_file)
            if not (os.path.isfile(limit_path) and os.path.isfile(usage_path)):
                continue

            raw_limit = self._read_value(limit_path)
            if raw_limit == "max":
                return None
            inactive_file = self._read_stat(os.path.join(self.root, stat_file),
                                            inactive_key)
            return int(raw_limit), int(self._read_value(usage_path)), inactive_file
        return None

    @staticmethod
    def _read_stat(path: str, key: str) -> int:
        """Read one counter from a memory.stat file; 0 when absent."""
        if not os.path.isfile(path):
            return 0
        with open(path) as f:
            for line in f:
                name, _, value = line.partition(" ")
                if name == key:
                    return int(value)
        return 0

    @staticmethod
    def _read_value(path: str) -> str:
        with open(path) as f:
            return f.read().strip()


class MemoryMonitor:
    """
    Monitor system memory and report pressure to a callback.

    Every tick samples memory and calls
    ``callback(is_usage_above_threshold, snapshot, usage_threshold)``.
    A ``refresh_interval_ms`` of 0 disables the background thread; ticks then
    only happen through explicit ``check_memory_pressure()`` calls.
    """

    def __init__(self,
                 usage_threshold: float,
                 min_memory_free_bytes: int,
                 refresh_interval_ms: int,
                 callback: Optional[MemoryCallback] = None,
                 sampler: Optional[MemorySampler] = None):
        """
        Initialize memory monitor.

        Args:
            usage_threshold: Used/total fraction at or above which pressure is reported
            min_memory_free_bytes: Free memory floor in bytes (-1 to disable)
            refresh_interval_ms: Milliseconds between ticks (0 to disable ticking)
            callback: Called on every tick
            sampler: Memory source (defaults to the cgroup-aware sampler)
        """
        if not 0.0 <= usage_threshold <= 1.0:
            raise ValueError(f"usage_threshold must be within [0, 1], got {usage_threshold}")
        if min_memory_free_bytes < -1:
            raise ValueError(
                f"min_memory_free_bytes must be >= 0 or -1, got {min_memory_free_bytes}")
        if refresh_interval_ms < 0:
            raise ValueError(f"refresh_interval_ms must be >= 0, got {refresh_interval_ms}")

        self._usage_threshold = float(usage_threshold)
        self._min_memory_free_bytes = int(min_memory_free_bytes)
        self._refresh_interval_ms = int(refresh_interval_ms)
        self._callback = callback
        self._sampler = sampler or CgroupMemorySampler()

        self._sample_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls,
                    config: Optional[OomGuardConfig] = None,
                    callback: Optional[MemoryCallback] = None,
                    sampler: Optional[MemorySampler] = None) -> 'MemoryMonitor':
        """Create a monitor from an OomGuardConfig (global config by default)."""
        config = config or default_config
        return cls(
            usage_threshold=config.memory_usage_threshold,
            min_memory_free_bytes=config.min_memory_free_bytes,
            refresh_interval_ms=config.memory_monitor_refresh_ms,
            callback=callback,
            sampler=sampler or CgroupMemorySampler(root=config.cgroup_root)
        )

    @property
    def usage_threshold(self) -> float:
        return self._usage_threshold

    @property
    def min_memory_free_bytes(self) -> int:
        return self._min_memory_free_bytes

    @property
    def refresh_interval_ms(self) -> int:
        return self._refresh_interval_ms

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_memory_snapshot(self) -> MemorySnapshot:
        """Read current memory usage; a failed read yields a zeroed snapshot."""
        with self._sample_lock:
            try:
                return self._sampler.sample()
            except (OSError, ValueError, psutil.Error) as e:
                logger.warning(f"Failed to read memory usage: {e}")
                return MemorySnapshot.empty()

    def is_usage_above_threshold(self, snapshot: MemorySnapshot) -> bool:
        """Apply the usage fraction and free memory floor to a snapshot."""
        if snapshot.total_bytes <= 0:
            return False
        if snapshot.used_fraction >= self._usage_threshold:
            return True
        return (self._min_memory_free_bytes >= 0
                and snapshot.free_bytes < self._min_memory_free_bytes)

    def check_memory_pressure(self) -> bool:
        """Run one tick: sample, evaluate and notify the callback."""
        with self._tick_lock:
            snapshot = self.get_memory_snapshot()
            is_above = self.is_usage_above_threshold(snapshot)
            if self._callback is not None:
                self._callback(is_above, snapshot, self._usage_threshold)
            return is_above

    def start(self, callback: Optional[MemoryCallback] = None) -> None:
        """Start background monitoring thread."""
        with self._lifecycle_lock:
            if callback is not None:
                self._callback = callback
            if self._callback is None:
                raise ValueError("MemoryMonitor requires a callback to start")
            if self._refresh_interval_ms == 0:
                logger.debug("Memory monitor refresh interval is 0; not ticking")
                return
            if self.is_running:
                return

            # Each loop owns its event so a restart cannot revive a stopping loop
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._monitor_loop, args=(self._stop_event,),
                name="memory-monitor", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Stop background monitoring; no tick starts after this returns."""
        with self._lifecycle_lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _monitor_loop(self, stop_event: threading.Event) -> None:
        """Background monitoring loop."""
        interval = self._refresh_interval_ms / 1000.0
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.check_memory_pressure()
            except Exception:
                logger.exception("Memory monitor callback failed")
            elapsed = time.monotonic() - started
            stop_event.wait(max(0.0, interval - elapsed))

    def __repr__(self) -> str:
        return (f"MemoryMonitor(usage_threshold={self._usage_threshold}, "
                f"min_memory_free_bytes={self._min_memory_free_bytes}, "
                f"refresh_interval_ms={self._refresh_interval_ms})")
