"""
Integer tick/price conversions.

``get_sqrt_ratio_at_tick`` is the bit-ratio table of the canonical TickMath
library; ``get_tick_at_sqrt_ratio`` inverts it exactly by binary search.
Plain prices are token1 per token0 scaled by ``PRICE_SCALE``.
"""

from math import isqrt

from ..exceptions import ValidationError

Q96 = 1 << 96
Q128 = 1 << 128
Q192 = 1 << 192
MAX_UINT256 = (1 << 256) - 1

MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

PRICE_SCALE = 10**18

# ratio multipliers for bits 0..19 of |tick|, Q128
_RATIOS = (
    0xfffcb933bd6fad37aa2d162d1a594001,
    0xfff97272373d413259a46990580e213a,
    0xfff2e50f5f656932ef12357cf3c7fdcc,
    0xffe5caca7e10e4e61c3624eaa0941cd0,
    0xffcb9843d60f6159c9db58835c926644,
    0xff973b41fa98c081472e6896dfb254c0,
    0xff2ea16466c96a3843ec78b326b52861,
    0xfe5dee046a99a2a811c461f1969c3053,
    0xfcbe86c7900a88aedcffc83b479aa3a4,
    0xf987a7253ac413176f2b074cf7815e54,
    0xf3392b0822b70005940c7a398e4b70f3,
    0xe7159475a2c29b7443b29c7fa6e889d9,
    0xd097f3bdfd2022b8845ad8f792aa5825,
    0xa9f746462d870fdf8a65dc1f90e061e5,
    0x70d869a156d2a1b890bb3df62baf32f7,
    0x31be135f97d08fd981231505542fcfa6,
    0x9aa508b5b7a84e1c677de54f3e99bc9,
    0x5d6af8dedb81196699c329225ee604,
    0x2216e584f5fa1ea926041bedfe98,
    0x48a170391f7dc42444e8fa2,
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """sqrt(1.0001^tick) as Q64.96, rounded up."""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValidationError("TICK_OUT_OF_RANGE", str(tick))
    abs_tick = tick if tick >= 0 else -tick

    ratio = 1 << 128
    for i, multiplier in enumerate(_RATIOS):
        if (abs_tick >> i) & 1:
            ratio = (ratio * multiplier) >> 128
    if tick > 0:
        ratio = MAX_UINT256 // ratio

    return (ratio >> 32) + (1 if ratio % (1 << 32) else 0)


def get_tick_at_sqrt_ratio(sqrt_price_x96: int) -> int:
    """Greatest tick whose sqrt ratio is <= ``sqrt_price_x96``."""
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ValidationError("SQRT_RATIO_OUT_OF_RANGE", str(sqrt_price_x96))
    lo, hi = MIN_TICK, MAX_TICK
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if get_sqrt_ratio_at_tick(mid) <= sqrt_price_x96:
            lo = mid
        else:
            hi = mid - 1
    return lo


def sqrt_ratio_from_price(price: int) -> int:
    """Q64.96 square root of a ``PRICE_SCALE``-scaled price, clamped to the valid range."""
    if price <= 0:
        raise ValidationError("INVALID_PRICE", str(price))
    sqrt_price_x96 = isqrt(price * Q192 // PRICE_SCALE)
    return min(max(sqrt_price_x96, MIN_SQRT_RATIO), MAX_SQRT_RATIO - 1)


def price_from_sqrt_ratio(sqrt_price_x96: int) -> int:
    return sqrt_price_x96 * sqrt_price_x96 * PRICE_SCALE >> 192


def tick_at_price(price: int) -> int:
    return get_tick_at_sqrt_ratio(sqrt_ratio_from_price(price))
