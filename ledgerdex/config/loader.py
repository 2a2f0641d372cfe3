"""
ledgerdex TOML Configuration Loader

Loads the engine sections of ledgerdex.toml with environment variable overrides.

Environment variable mapping:
    [host] threads_per_period          → LEDGERDEX_THREADS_PER_PERIOD
    [automation.limit] max_per_check   → LEDGERDEX_LIMIT_MAX_PER_CHECK
    [automation.grid] default_fee      → LEDGERDEX_GRID_DEFAULT_FEE
    ...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from .. import constants
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@dataclass
class HostConfig:
    """[host] section."""
    threads_per_period: int = constants.THREADS_PER_PERIOD
    period_duration_ms: int = constants.PERIOD_DURATION_MS
    genesis_timestamp_ms: int = constants.GENESIS_TIMESTAMP_MS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostConfig":
        return cls(
            threads_per_period=data.get("threads_per_period", constants.THREADS_PER_PERIOD),
            period_duration_ms=data.get("period_duration_ms", constants.PERIOD_DURATION_MS),
            genesis_timestamp_ms=data.get("genesis_timestamp_ms", constants.GENESIS_TIMESTAMP_MS),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("LEDGERDEX_THREADS_PER_PERIOD"):
            self.threads_per_period = int(v)
        if v := os.environ.get("LEDGERDEX_PERIOD_DURATION_MS"):
            self.period_duration_ms = int(v)


@dataclass
class SchedulerConfig:
    """One [automation.<kind>] section."""
    max_per_check: int
    check_interval_periods: int
    gas_budget: int
    default_fee: int = constants.DEFAULT_POOL_FEE
    validity_periods: int = constants.WAKE_VALIDITY_PERIODS

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: "SchedulerConfig") -> "SchedulerConfig":
        return cls(
            max_per_check=data.get("max_per_check", defaults.max_per_check),
            check_interval_periods=data.get("check_interval_periods", defaults.check_interval_periods),
            gas_budget=data.get("gas_budget", defaults.gas_budget),
            default_fee=data.get("default_fee", defaults.default_fee),
            validity_periods=data.get("validity_periods", defaults.validity_periods),
        )

    def apply_env(self, kind: str) -> None:
        prefix = f"LEDGERDEX_{kind.upper()}_"
        if v := os.environ.get(prefix + "MAX_PER_CHECK"):
            self.max_per_check = int(v)
        if v := os.environ.get(prefix + "CHECK_INTERVAL"):
            self.check_interval_periods = int(v)
        if v := os.environ.get(prefix + "GAS_BUDGET"):
            self.gas_budget = int(v)
        if v := os.environ.get(prefix + "DEFAULT_FEE"):
            self.default_fee = int(v)

    def validate(self, kind: str) -> None:
        if self.max_per_check < 1:
            raise ConfigurationError("INVALID_CONFIG", f"{kind}.max_per_check must be >= 1")
        if self.check_interval_periods < 1:
            raise ConfigurationError("INVALID_CONFIG", f"{kind}.check_interval_periods must be >= 1")
        if self.validity_periods < 1:
            raise ConfigurationError("INVALID_CONFIG", f"{kind}.validity_periods must be >= 1")
        if not 0 <= self.default_fee < 1_000_000:
            raise ConfigurationError("INVALID_CONFIG", f"{kind}.default_fee out of range")


def _limit_defaults() -> SchedulerConfig:
    return SchedulerConfig(
        max_per_check=constants.LIMIT_MAX_ORDERS_PER_CHECK,
        check_interval_periods=constants.LIMIT_CHECK_INTERVAL_PERIODS,
        gas_budget=constants.LIMIT_EXECUTION_GAS_BUDGET,
    )


def _recurring_defaults() -> SchedulerConfig:
    return SchedulerConfig(
        max_per_check=constants.RECURRING_MAX_ORDERS_PER_CHECK,
        check_interval_periods=constants.RECURRING_DEFAULT_INTERVAL_PERIODS,
        gas_budget=constants.RECURRING_EXECUTION_GAS_BUDGET,
    )


def _grid_defaults() -> SchedulerConfig:
    return SchedulerConfig(
        max_per_check=constants.GRID_MAX_GRIDS_PER_CHECK,
        check_interval_periods=constants.GRID_CHECK_INTERVAL_PERIODS,
        gas_budget=constants.GRID_EXECUTION_GAS_BUDGET,
    )


# -----------------------------------------------------------------------
# Top-level engine config
# -----------------------------------------------------------------------

@dataclass
class EngineConfig:
    """
    Unified engine configuration.

    Recurring orders treat ``check_interval_periods`` as the upper bound of
    the re-arm delay; the actual delay is the smallest interval among the
    still-active orders.
    """
    log_level: str = "INFO"
    host: HostConfig = field(default_factory=HostConfig)
    limit: SchedulerConfig = field(default_factory=_limit_defaults)
    recurring: SchedulerConfig = field(default_factory=_recurring_defaults)
    grid: SchedulerConfig = field(default_factory=_grid_defaults)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        automation = data.get("automation", {})
        return cls(
            log_level=data.get("engine", {}).get("log_level", "INFO"),
            host=HostConfig.from_dict(data.get("host", {})),
            limit=SchedulerConfig.from_dict(automation.get("limit", {}), _limit_defaults()),
            recurring=SchedulerConfig.from_dict(automation.get("recurring", {}), _recurring_defaults()),
            grid=SchedulerConfig.from_dict(automation.get("grid", {}), _grid_defaults()),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomli.load(f)
            except tomli.TOMLDecodeError as exc:
                raise ConfigurationError("INVALID_CONFIG", f"{config_path}: {exc}") from exc

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        if v := os.environ.get("LEDGERDEX_LOG_LEVEL"):
            self.log_level = v
        self.host.apply_env()
        self.limit.apply_env("limit")
        self.recurring.apply_env("recurring")
        self.grid.apply_env("grid")

    def validate(self) -> bool:
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError("INVALID_CONFIG", f"Invalid log_level: {self.log_level}")
        if self.host.threads_per_period < 1:
            raise ConfigurationError("INVALID_CONFIG", "threads_per_period must be >= 1")
        if self.host.period_duration_ms < self.host.threads_per_period:
            raise ConfigurationError("INVALID_CONFIG", "period_duration_ms shorter than one ms per thread")
        self.limit.validate("limit")
        self.recurring.validate("recurring")
        self.grid.validate("grid")
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics)."""
        def section(s: SchedulerConfig) -> Dict[str, Any]:
            return {
                "max_per_check": s.max_per_check,
                "check_interval_periods": s.check_interval_periods,
                "gas_budget": s.gas_budget,
                "default_fee": s.default_fee,
                "validity_periods": s.validity_periods,
            }

        return {
            "engine": {"log_level": self.log_level},
            "host": {
                "threads_per_period": self.host.threads_per_period,
                "period_duration_ms": self.host.period_duration_ms,
                "genesis_timestamp_ms": self.host.genesis_timestamp_ms,
            },
            "automation": {
                "limit": section(self.limit),
                "recurring": section(self.recurring),
                "grid": section(self.grid),
            },
        }


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Resolution order:
        1. Explicit *path* argument
        2. LEDGERDEX_CONFIG env var (or .env entry)
        3. ./ledgerdex.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("LEDGERDEX_CONFIG", str(constants.LEDGERDEX_CONFIG))

    cfg = EngineConfig.from_file(path)
    cfg.validate()
    return cfg
