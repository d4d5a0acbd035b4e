"""
Configuration management for the out-of-memory guard.
"""

import os
from typing import Dict, Mapping, Optional
from dataclasses import dataclass, fields, replace


ENV_PREFIX = "OOM_GUARD_"


@dataclass
class OomGuardConfig:
    """Global configuration for memory monitoring and worker killing."""

    # Memory pressure thresholds
    memory_usage_threshold: float = 0.95  # Fraction of total memory
    min_memory_free_bytes: int = -1  # -1 disables the free-memory floor

    # Monitoring
    memory_monitor_refresh_ms: int = 250  # 0 disables automatic ticking
    cgroup_root: str = "/sys/fs/cgroup"

    # Victim selection: "retriable_lifo" or "group_by_depth"
    worker_killing_policy: str = "retriable_lifo"

    _instance: Optional['OomGuardConfig'] = None

    def __post_init__(self):
        """Validate configuration values."""
        if not 0.0 <= self.memory_usage_threshold <= 1.0:
            raise ValueError(
                f"memory_usage_threshold must be within [0, 1], "
                f"got {self.memory_usage_threshold}")
        if self.min_memory_free_bytes < -1:
            raise ValueError(
                f"min_memory_free_bytes must be >= 0 or -1 to disable, "
                f"got {self.min_memory_free_bytes}")
        if self.memory_monitor_refresh_ms < 0:
            raise ValueError(
                f"memory_monitor_refresh_ms must be >= 0, "
                f"got {self.memory_monitor_refresh_ms}")

    @classmethod
    def get_instance(cls) -> 'OomGuardConfig':
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def set_defaults(cls, **kwargs) -> None:
        """Set default configuration values; invalid values leave it unchanged."""
        instance = cls.get_instance()
        known = {key: value for key, value in kwargs.items() if hasattr(instance, key)}
        validated = replace(instance, **known)
        for key in known:
            setattr(instance, key, getattr(validated, key))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'OomGuardConfig':
        """
        Build a configuration from OOM_GUARD_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            New configuration; unset variables keep their defaults
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, object] = {}

        for f in fields(cls):
            if f.name.startswith('_'):
                continue
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            if f.type in (float, 'float'):
                overrides[f.name] = float(raw)
            elif f.type in (int, 'int'):
                overrides[f.name] = int(raw)
            else:
                overrides[f.name] = raw

        return cls(**overrides)


# Global configuration instance
config = OomGuardConfig.get_instance()
