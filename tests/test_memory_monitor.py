#!/usr/bin/env python3
"""
Tests for the memory monitor and memory samplers.
"""

import unittest
import os
import shutil
import tempfile
import threading
import time
from node_oom_guard import (
    MemoryMonitor, MemorySnapshot, MemorySampler, CgroupMemorySampler,
    PsutilMemorySampler, OomGuardConfig
)

GB = 1024 ** 3


class StaticMemorySampler(MemorySampler):
    """Sampler returning configurable fixed values."""

    def __init__(self, total=16 * GB, used=8 * GB, free=None):
        self.total = total
        self.used = used
        self.free = free
        self.calls = 0

    def sample(self):
        self.calls += 1
        free = self.total - self.used if self.free is None else self.free
        return MemorySnapshot(self.total, self.used, free, time.time())


class FailingMemorySampler(MemorySampler):
    """Sampler whose OS read always fails."""

    def __init__(self):
        self.calls = 0

    def sample(self):
        self.calls += 1
        raise OSError("/proc/meminfo unavailable")


class CallbackRecorder:
    """Collect callback invocations and signal when enough have arrived."""

    def __init__(self, wanted=1):
        self.calls = []
        self.wanted = wanted
        self.done = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, is_above, snapshot, threshold):
        with self._lock:
            self.calls.append((is_above, snapshot, threshold))
            if len(self.calls) >= self.wanted:
                self.done.set()


class TestMemorySnapshot(unittest.TestCase):
    """Test MemorySnapshot values."""

    def test_used_fraction(self):
        snapshot = MemorySnapshot(4 * GB, GB, 3 * GB, time.time())
        self.assertAlmostEqual(snapshot.used_fraction, 0.25)
        self.assertAlmostEqual(snapshot.used_gb, 1.0)
        self.assertAlmostEqual(snapshot.free_gb, 3.0)
        self.assertIn("25.0%", str(snapshot))

    def test_empty_snapshot(self):
        snapshot = MemorySnapshot.empty()
        self.assertEqual(snapshot.total_bytes, 0)
        self.assertEqual(snapshot.used_fraction, 0.0)

    def test_immutable(self):
        snapshot = MemorySnapshot(GB, 0, GB, time.time())
        with self.assertRaises(AttributeError):
            snapshot.used_bytes = 1


class TestThresholds(unittest.TestCase):
    """Test the pressure formula."""

    def make_monitor(self, usage_threshold, min_free=-1):
        return MemoryMonitor(usage_threshold, min_free, 0, sampler=StaticMemorySampler())

    def test_usage_threshold(self):
        monitor = self.make_monitor(0.5)
        self.assertTrue(monitor.is_usage_above_threshold(
            MemorySnapshot(10, 5, 5, time.time())))
        self.assertFalse(monitor.is_usage_above_threshold(
            MemorySnapshot(10, 4, 6, time.time())))

    def test_zero_threshold_always_above(self):
        monitor = self.make_monitor(0)
        self.assertTrue(monitor.is_usage_above_threshold(
            MemorySnapshot(10, 0, 10, time.time())))

    def test_min_free_bytes(self):
        monitor = self.make_monitor(1.0, min_free=2 * GB)
        self.assertTrue(monitor.is_usage_above_threshold(
            MemorySnapshot(16 * GB, 15 * GB, GB, time.time())))
        self.assertFalse(monitor.is_usage_above_threshold(
            MemorySnapshot(16 * GB, 13 * GB, 3 * GB, time.time())))

    def test_min_free_bytes_disabled(self):
        monitor = self.make_monitor(0.99, min_free=-1)
        self.assertFalse(monitor.is_usage_above_threshold(
            MemorySnapshot(16 * GB, 15 * GB, GB, time.time())))

    def test_zeroed_snapshot_never_above(self):
        monitor = self.make_monitor(0, min_free=GB)
        self.assertFalse(monitor.is_usage_above_threshold(MemorySnapshot.empty()))

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            MemoryMonitor(1.5, -1, 0)
        with self.assertRaises(ValueError):
            MemoryMonitor(0.5, -2, 0)
        with self.assertRaises(ValueError):
            MemoryMonitor(0.5, -1, -10)


class TestMemoryMonitor(unittest.TestCase):
    """Test monitor ticking behaviour."""

    def setUp(self):
        self.monitors = []

    def tearDown(self):
        for monitor in self.monitors:
            monitor.stop()

    def make_monitor(self, *args, **kwargs):
        monitor = MemoryMonitor(*args, **kwargs)
        self.monitors.append(monitor)
        return monitor

    def test_zero_interval_never_ticks(self):
        def fail_callback(is_above, snapshot, threshold):
            self.fail("Monitor should not be running")

        sampler = StaticMemorySampler()
        monitor = self.make_monitor(0, -1, 0, callback=fail_callback, sampler=sampler)
        monitor.start()
        time.sleep(0.05)

        self.assertFalse(monitor.is_running)
        self.assertEqual(sampler.calls, 0)

    def test_manual_tick(self):
        recorder = CallbackRecorder()
        monitor = self.make_monitor(
            0.4, -1, 0, callback=recorder, sampler=StaticMemorySampler(10 * GB, 5 * GB))

        self.assertTrue(monitor.check_memory_pressure())
        self.assertEqual(len(recorder.calls), 1)
        is_above, snapshot, threshold = recorder.calls[0]
        self.assertTrue(is_above)
        self.assertEqual(snapshot.used_bytes, 5 * GB)
        self.assertEqual(threshold, 0.4)

    def test_periodic_ticks(self):
        recorder = CallbackRecorder(wanted=3)
        monitor = self.make_monitor(
            0.75, -1, 10, sampler=StaticMemorySampler(16 * GB, 12 * GB))
        monitor.start(recorder)

        self.assertTrue(recorder.done.wait(timeout=5))
        self.assertTrue(monitor.is_running)
        for is_above, snapshot, threshold in recorder.calls:
            self.assertEqual(threshold, 0.75)
            self.assertEqual(is_above, snapshot.used_fraction >= threshold)
            self.assertTrue(is_above)

    def test_reports_below_threshold_every_tick(self):
        recorder = CallbackRecorder(wanted=2)
        monitor = self.make_monitor(
            0.9, -1, 10, sampler=StaticMemorySampler(16 * GB, GB))
        monitor.start(recorder)

        self.assertTrue(recorder.done.wait(timeout=5))
        self.assertTrue(all(not is_above for is_above, _, _ in recorder.calls))

    def test_start_requires_callback(self):
        monitor = self.make_monitor(0.5, -1, 10, sampler=StaticMemorySampler())
        with self.assertRaises(ValueError):
            monitor.start()

    def test_stop_halts_ticks(self):
        recorder = CallbackRecorder(wanted=2)
        monitor = self.make_monitor(0.5, -1, 5, sampler=StaticMemorySampler())
        monitor.start(recorder)
        self.assertTrue(recorder.done.wait(timeout=5))

        monitor.stop()
        self.assertFalse(monitor.is_running)
        count = len(recorder.calls)
        time.sleep(0.05)
        self.assertEqual(len(recorder.calls), count)

        # Stopping twice is harmless
        monitor.stop()

    def test_concurrent_start_runs_one_loop(self):
        started = []
        barrier = threading.Barrier(8)
        monitor = self.make_monitor(0.5, -1, 1000, sampler=StaticMemorySampler())

        def on_tick(is_above, snapshot, threshold):
            started.append(threading.current_thread())

        def start():
            barrier.wait()
            monitor.start(on_tick)

        threads = [threading.Thread(target=start) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        time.sleep(0.1)

        # One loop ticks once, then waits a full second
        self.assertTrue(monitor.is_running)
        self.assertEqual(len(started), 1)

    def test_restart_after_stop(self):
        recorder = CallbackRecorder(wanted=1)
        monitor = self.make_monitor(0.5, -1, 5, sampler=StaticMemorySampler())
        monitor.start(recorder)
        self.assertTrue(recorder.done.wait(timeout=5))
        first = monitor._thread
        monitor.stop()
        self.assertFalse(first.is_alive())

        restarted = CallbackRecorder(wanted=2)
        monitor.start(restarted)
        self.assertTrue(restarted.done.wait(timeout=5))
        self.assertTrue(monitor.is_running)

    def test_stop_from_callback(self):
        stopped = threading.Event()
        sampler = StaticMemorySampler()

        def callback(is_above, snapshot, threshold):
            monitor.stop()
            stopped.set()

        monitor = self.make_monitor(0.5, -1, 5, callback=callback, sampler=sampler)
        monitor.start()
        self.assertTrue(stopped.wait(timeout=5))
        time.sleep(0.05)
        self.assertEqual(sampler.calls, 1)

    def test_read_failure_yields_zeroed_snapshot(self):
        recorder = CallbackRecorder(wanted=3)
        sampler = FailingMemorySampler()
        monitor = self.make_monitor(0, 1024, 5, sampler=sampler)

        with self.assertLogs("node_oom_guard.memory.monitor", level="WARNING"):
            monitor.start(recorder)
            self.assertTrue(recorder.done.wait(timeout=5))

        for is_above, snapshot, _ in recorder.calls:
            self.assertFalse(is_above)
            self.assertEqual(snapshot.total_bytes, 0)

    def test_callback_error_keeps_ticking(self):
        recorder = CallbackRecorder(wanted=3)

        def callback(is_above, snapshot, threshold):
            recorder(is_above, snapshot, threshold)
            raise RuntimeError("node manager failure")

        monitor = self.make_monitor(0.5, -1, 5, callback=callback,
                                    sampler=StaticMemorySampler())
        with self.assertLogs("node_oom_guard.memory.monitor", level="ERROR"):
            monitor.start()
            self.assertTrue(recorder.done.wait(timeout=5))

    def test_get_memory_snapshot(self):
        monitor = self.make_monitor(0.5, -1, 0, sampler=StaticMemorySampler(8 * GB, 2 * GB))
        snapshot = monitor.get_memory_snapshot()
        self.assertEqual(snapshot.total_bytes, 8 * GB)
        self.assertEqual(snapshot.free_bytes, 6 * GB)

    def test_from_config(self):
        cfg = OomGuardConfig(memory_usage_threshold=0.8, min_memory_free_bytes=GB,
                             memory_monitor_refresh_ms=0)
        monitor = MemoryMonitor.from_config(cfg, sampler=StaticMemorySampler())
        self.assertEqual(monitor.usage_threshold, 0.8)
        self.assertEqual(monitor.min_memory_free_bytes, GB)
        self.assertEqual(monitor.refresh_interval_ms, 0)


class TestSamplers(unittest.TestCase):
    """Test psutil and cgroup samplers."""

    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.system = StaticMemorySampler(16 * GB, 4 * GB)

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def write(self, name, value):
        path = os.path.join(self.root, name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(f"{value}\n")

    def test_psutil_sampler(self):
        snapshot = PsutilMemorySampler().sample()
        self.assertGreater(snapshot.total_bytes, 0)
        self.assertEqual(snapshot.used_bytes + snapshot.free_bytes, snapshot.total_bytes)

    def test_no_cgroup_files(self):
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.total_bytes, 16 * GB)

    def test_cgroup_v2_limit(self):
        self.write("memory.max", 2 * GB)
        self.write("memory.current", GB // 2)
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.total_bytes, 2 * GB)
        self.assertEqual(snapshot.used_bytes, GB // 2)
        self.assertEqual(snapshot.free_bytes, 2 * GB - GB // 2)

    def test_cgroup_v2_unlimited(self):
        self.write("memory.max", "max")
        self.write("memory.current", GB)
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.total_bytes, 16 * GB)

    def test_cgroup_v1_limit_above_system(self):
        self.write("memory/memory.limit_in_bytes", 9223372036854771712)
        self.write("memory/memory.usage_in_bytes", GB)
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.total_bytes, 16 * GB)

    def test_cgroup_v1_limit(self):
        self.write("memory/memory.limit_in_bytes", 4 * GB)
        self.write("memory/memory.usage_in_bytes", 5 * GB)
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.total_bytes, 4 * GB)
        self.assertEqual(snapshot.free_bytes, 0)

    def test_cgroup_v2_inactive_file_counts_as_free(self):
        self.write("memory.max", 4 * GB)
        self.write("memory.current", 3 * GB + 900 * 1024 ** 2)
        self.write("memory.stat", f"anon {GB}\nfile {3 * GB}\n"
                                  f"active_file {100 * 1024 ** 2}\n"
                                  f"inactive_file {3 * GB}\n")
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()

        self.assertEqual(snapshot.used_bytes, 900 * 1024 ** 2)
        self.assertEqual(snapshot.free_bytes, 4 * GB - 900 * 1024 ** 2)
        monitor = MemoryMonitor(0.95, -1, 0, sampler=StaticMemorySampler())
        self.assertFalse(monitor.is_usage_above_threshold(snapshot))

    def test_cgroup_v1_total_inactive_file(self):
        self.write("memory/memory.limit_in_bytes", 4 * GB)
        self.write("memory/memory.usage_in_bytes", 3 * GB)
        self.write("memory/memory.stat", f"inactive_file {GB}\n"
                                         f"total_inactive_file {2 * GB}\n")
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.used_bytes, GB)
        self.assertEqual(snapshot.free_bytes, 3 * GB)

    def test_cgroup_inactive_file_clamped(self):
        self.write("memory.max", 4 * GB)
        self.write("memory.current", GB)
        self.write("memory.stat", f"inactive_file {2 * GB}\n")
        snapshot = CgroupMemorySampler(self.root, fallback=self.system).sample()
        self.assertEqual(snapshot.used_bytes, 0)
        self.assertEqual(snapshot.free_bytes, 4 * GB)

    def test_malformed_cgroup_value_degrades(self):
        self.write("memory.max", "garbage")
        self.write("memory.current", GB)
        monitor = MemoryMonitor(0.5, -1, 0,
                                sampler=CgroupMemorySampler(self.root, fallback=self.system))
        with self.assertLogs("node_oom_guard.memory.monitor", level="WARNING"):
            snapshot = monitor.get_memory_snapshot()
        self.assertEqual(snapshot.total_bytes, 0)


if __name__ == "__main__":
    unittest.main()
