"""Concentrated-liquidity AMM: math libraries, pool and factory contracts."""

from .factory import Factory
from .pool import Pool, PoolInfo, PoolSnapshot

__all__ = ["Factory", "Pool", "PoolInfo", "PoolSnapshot"]
