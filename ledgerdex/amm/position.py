"""
Position accounting.

Positions are keyed by (owner, tickLower, tickUpper) and earn fees through
fee-growth checkpoints: whatever the inside accumulator gained since the
last touch, times the liquidity held over that stretch.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple

from ..exceptions import InsufficientLiquidityError, InvariantViolation
from .tick_math import Q96, Q128

_MOD_256 = 1 << 256


def mul_div(a: int, b: int, denominator: int) -> int:
    return a * b // denominator


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    result, remainder = divmod(a * b, denominator)
    return result + 1 if remainder else result


def get_amount0_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """Token0 held by ``liquidity`` between two sqrt prices."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    numerator1 = liquidity << 96
    numerator2 = sqrt_b - sqrt_a
    if round_up:
        return -(-mul_div_rounding_up(numerator1, numerator2, sqrt_b) // sqrt_a)
    return mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def get_amount1_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """Token1 held by ``liquidity`` between two sqrt prices."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b - sqrt_a, Q96)
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def amounts_for_liquidity(
    sqrt_price: int,
    sqrt_lower: int,
    sqrt_upper: int,
    liquidity: int,
    round_up: bool,
) -> Tuple[int, int]:
    if sqrt_price < sqrt_lower:
        return get_amount0_delta(sqrt_lower, sqrt_upper, liquidity, round_up), 0
    if sqrt_price < sqrt_upper:
        return (
            get_amount0_delta(sqrt_price, sqrt_upper, liquidity, round_up),
            get_amount1_delta(sqrt_lower, sqrt_price, liquidity, round_up),
        )
    return 0, get_amount1_delta(sqrt_lower, sqrt_upper, liquidity, round_up)


def _liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    intermediate = mul_div(sqrt_a, sqrt_b, Q96)
    return mul_div(amount0, intermediate, sqrt_b - sqrt_a)


def _liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    return mul_div(amount1, Q96, sqrt_b - sqrt_a)


def liquidity_for_amounts(
    sqrt_price: int,
    sqrt_lower: int,
    sqrt_upper: int,
    amount0: int,
    amount1: int,
) -> int:
    """Largest liquidity the two amounts can back over the range."""
    if sqrt_price < sqrt_lower:
        return _liquidity_for_amount0(sqrt_lower, sqrt_upper, amount0)
    if sqrt_price < sqrt_upper:
        return min(
            _liquidity_for_amount0(sqrt_price, sqrt_upper, amount0),
            _liquidity_for_amount1(sqrt_lower, sqrt_price, amount1),
        )
    return _liquidity_for_amount1(sqrt_lower, sqrt_upper, amount1)


@dataclass
class PositionInfo:
    liquidity: int = 0
    fee_growth_inside0_last_x128: int = 0
    fee_growth_inside1_last_x128: int = 0
    tokens_owed0: int = 0
    tokens_owed1: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionInfo":
        return cls(**data)


def position_key(owner: str, tick_lower: int, tick_upper: int) -> str:
    return f"position:{owner}:{tick_lower}:{tick_upper}"


def update_position(
    position: PositionInfo,
    liquidity_delta: int,
    fee_growth_inside0_x128: int,
    fee_growth_inside1_x128: int,
) -> None:
    """Accrue fees against the old liquidity, then apply ``liquidity_delta`` in place."""
    if liquidity_delta == 0:
        if position.liquidity == 0:
            raise InvariantViolation("POSITION_EMPTY")
        liquidity_next = position.liquidity
    else:
        liquidity_next = position.liquidity + liquidity_delta
        if liquidity_next < 0:
            raise InsufficientLiquidityError(
                "INSUFFICIENT_LIQUIDITY",
                f"position holds {position.liquidity}, removing {-liquidity_delta}",
            )

    owed0 = ((fee_growth_inside0_x128 - position.fee_growth_inside0_last_x128) % _MOD_256) * position.liquidity // Q128
    owed1 = ((fee_growth_inside1_x128 - position.fee_growth_inside1_last_x128) % _MOD_256) * position.liquidity // Q128

    position.liquidity = liquidity_next
    position.fee_growth_inside0_last_x128 = fee_growth_inside0_x128
    position.fee_growth_inside1_last_x128 = fee_growth_inside1_x128
    if owed0 or owed1:
        position.tokens_owed0 += owed0
        position.tokens_owed1 += owed1
