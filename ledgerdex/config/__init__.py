"""
ledgerdex Engine Configuration

Loads ledgerdex.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    EngineConfig,
    HostConfig,
    SchedulerConfig,
    load_config,
)

__all__ = [
    "EngineConfig",
    "HostConfig",
    "SchedulerConfig",
    "load_config",
]
