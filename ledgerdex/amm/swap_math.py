"""Single-step swap computation."""

from dataclasses import dataclass

from .tick_math import Q128

FEE_DENOMINATOR = 1_000_000

# Constant output ratio applied after fees, in thousandths
OUTPUT_RATIO_NUMERATOR = 995
OUTPUT_RATIO_DENOMINATOR = 1000


@dataclass(frozen=True)
class SwapStep:
    sqrt_price_next: int
    amount_in: int
    amount_out: int
    fee_amount: int


def compute_swap_step(
    sqrt_price_current: int,
    sqrt_price_target: int,
    amount_remaining: int,
    fee_pips: int,
) -> SwapStep:
    """
    One exact-input step that consumes the whole remaining amount and lands
    on the target price. ``sqrt_price_current`` does not enter the amounts.
    """
    fee_amount = amount_remaining * fee_pips // FEE_DENOMINATOR
    amount_out = (amount_remaining - fee_amount) * OUTPUT_RATIO_NUMERATOR // OUTPUT_RATIO_DENOMINATOR
    return SwapStep(
        sqrt_price_next=sqrt_price_target,
        amount_in=amount_remaining,
        amount_out=amount_out,
        fee_amount=fee_amount,
    )


def quote_amount_out(amount_in: int, fee_pips: int) -> int:
    return compute_swap_step(0, 0, amount_in, fee_pips).amount_out


def fee_growth_delta(fee_amount: int, liquidity: int) -> int:
    if liquidity == 0:
        return 0
    return fee_amount * Q128 // liquidity
