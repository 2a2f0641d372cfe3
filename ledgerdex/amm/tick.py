"""Per-tick liquidity and fee-growth records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

from ..exceptions import InvariantViolation
from .tick_math import MAX_TICK

MAX_UINT128 = (1 << 128) - 1
_MOD_256 = 1 << 256


@dataclass
class TickInfo:
    liquidity_gross: int = 0
    liquidity_net: int = 0
    fee_growth_outside0_x128: int = 0
    fee_growth_outside1_x128: int = 0
    seconds_outside: int = 0
    initialized: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TickInfo":
        return cls(**data)


def tick_key(tick: int) -> str:
    return f"tick:{tick}"


def max_liquidity_per_tick(tick_spacing: int) -> int:
    max_tick = (MAX_TICK // tick_spacing) * tick_spacing
    min_tick = -max_tick
    num_ticks = (max_tick - min_tick) // tick_spacing + 1
    return MAX_UINT128 // num_ticks


def update_tick(
    info: TickInfo,
    tick: int,
    tick_current: int,
    liquidity_delta: int,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
    seconds: int,
    upper: bool,
    max_liquidity: int,
) -> bool:
    """
    Apply a liquidity change to one boundary of a position.

    Returns True when the tick went from uninitialized to initialized or back.
    """
    gross_before = info.liquidity_gross
    gross_after = gross_before + liquidity_delta
    if gross_after < 0:
        raise InvariantViolation("TICK_LIQUIDITY_UNDERFLOW", str(tick))
    if gross_after > max_liquidity:
        raise InvariantViolation("TICK_LIQUIDITY_OVERFLOW", str(tick))

    flipped = (gross_after == 0) != (gross_before == 0)

    if gross_before == 0:
        # growth before initialization is attributed to the range below the tick
        if tick <= tick_current:
            info.fee_growth_outside0_x128 = fee_growth_global0_x128
            info.fee_growth_outside1_x128 = fee_growth_global1_x128
            info.seconds_outside = seconds
        info.initialized = True

    info.liquidity_gross = gross_after
    info.liquidity_net = info.liquidity_net - liquidity_delta if upper else info.liquidity_net + liquidity_delta

    if gross_after == 0:
        info.initialized = False

    return flipped


def cross(
    info: TickInfo,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
    seconds: int,
) -> int:
    """Flip the outside accumulators as the price moves across; returns liquidityNet."""
    info.fee_growth_outside0_x128 = (fee_growth_global0_x128 - info.fee_growth_outside0_x128) % _MOD_256
    info.fee_growth_outside1_x128 = (fee_growth_global1_x128 - info.fee_growth_outside1_x128) % _MOD_256
    info.seconds_outside = seconds - info.seconds_outside
    return info.liquidity_net


def fee_growth_inside(
    lower: TickInfo,
    upper: TickInfo,
    tick_lower: int,
    tick_upper: int,
    tick_current: int,
    fee_growth_global0_x128: int,
    fee_growth_global1_x128: int,
) -> Tuple[int, int]:
    if tick_current >= tick_lower:
        below0 = lower.fee_growth_outside0_x128
        below1 = lower.fee_growth_outside1_x128
    else:
        below0 = (fee_growth_global0_x128 - lower.fee_growth_outside0_x128) % _MOD_256
        below1 = (fee_growth_global1_x128 - lower.fee_growth_outside1_x128) % _MOD_256

    if tick_current < tick_upper:
        above0 = upper.fee_growth_outside0_x128
        above1 = upper.fee_growth_outside1_x128
    else:
        above0 = (fee_growth_global0_x128 - upper.fee_growth_outside0_x128) % _MOD_256
        above1 = (fee_growth_global1_x128 - upper.fee_growth_outside1_x128) % _MOD_256

    return (
        (fee_growth_global0_x128 - below0 - above0) % _MOD_256,
        (fee_growth_global1_x128 - below1 - above1) % _MOD_256,
    )
