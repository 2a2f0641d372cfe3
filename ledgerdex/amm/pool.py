"""
Concentrated-liquidity pool contract.

Liquidity is provided over tick ranges. The pool tracks the active
liquidity at the current tick, per-tick net liquidity and fee-growth
accumulators, and per-position fee checkpoints. Swaps are a single
constant-ratio step that lands the price on the caller's limit; every
initialized tick the price passes over is crossed so that active liquidity
stays equal to the sum of in-range positions.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, replace
from typing import List, Tuple

from ..constants import NATIVE_TOKEN, TOKEN_ID
from ..exceptions import InsufficientBalanceError, InsufficientLiquidityError, InvariantViolation, ValidationError
from ..host import guard
from ..host.guard import ReentrancyGuard
from ..host.ledger import Storage
from ..host.runtime import CallContext, Contract, entry_point, view
from ..logger import get_logger
from .position import PositionInfo, amounts_for_liquidity, position_key, update_position
from .swap_math import compute_swap_step, fee_growth_delta
from .tick import TickInfo, cross, fee_growth_inside, max_liquidity_per_tick, tick_key, update_tick
from .tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    Q96,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)

logger = get_logger(__name__)

FACTORY = "FACTORY"
TOKEN_0 = "TOKEN_0"
TOKEN_1 = "TOKEN_1"
FEE = "FEE"
TICK_SPACING = "TICK_SPACING"
MAX_LIQUIDITY_PER_TICK = "MAX_LIQUIDITY_PER_TICK"
SQRT_PRICE_X96 = "SQRT_PRICE_X96"
TICK = "TICK"
LIQUIDITY = "LIQUIDITY"
FEE_GROWTH_GLOBAL_0 = "FEE_GROWTH_GLOBAL_0"
FEE_GROWTH_GLOBAL_1 = "FEE_GROWTH_GLOBAL_1"
INITIALIZED_TICKS = "initialized_ticks"


@dataclass(frozen=True)
class PoolSnapshot:
    sqrt_price_x96: int
    tick: int
    liquidity: int
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int


@dataclass(frozen=True)
class PoolInfo:
    state: PoolSnapshot
    token0: str
    token1: str
    fee: int
    tick_spacing: int


def _load_state(storage: Storage) -> PoolSnapshot:
    return PoolSnapshot(
        sqrt_price_x96=storage.get_int(SQRT_PRICE_X96),
        tick=storage.get_int(TICK),
        liquidity=storage.get_int(LIQUIDITY),
        fee_growth_global0_x128=storage.get_int(FEE_GROWTH_GLOBAL_0),
        fee_growth_global1_x128=storage.get_int(FEE_GROWTH_GLOBAL_1),
    )


def _save_state(storage: Storage, state: PoolSnapshot) -> None:
    storage.set(SQRT_PRICE_X96, state.sqrt_price_x96)
    storage.set(TICK, state.tick)
    storage.set(LIQUIDITY, state.liquidity)
    storage.set(FEE_GROWTH_GLOBAL_0, state.fee_growth_global0_x128)
    storage.set(FEE_GROWTH_GLOBAL_1, state.fee_growth_global1_x128)


def _load_tick(storage: Storage, tick: int) -> TickInfo:
    data = storage.get(tick_key(tick))
    return TickInfo.from_dict(data) if data else TickInfo()


def _load_position(storage: Storage, owner: str, tick_lower: int, tick_upper: int) -> PositionInfo:
    data = storage.get(position_key(owner, tick_lower, tick_upper))
    return PositionInfo.from_dict(data) if data else PositionInfo()


def _set_tick_initialized(storage: Storage, tick: int, initialized: bool) -> None:
    ticks: List[int] = storage.get(INITIALIZED_TICKS, [])
    index = bisect.bisect_left(ticks, tick)
    present = index < len(ticks) and ticks[index] == tick
    if initialized and not present:
        ticks.insert(index, tick)
    elif not initialized and present:
        ticks.pop(index)
    else:
        return
    storage.set(INITIALIZED_TICKS, ticks)


def _seconds(ctx: CallContext) -> int:
    return ctx.timestamp // 1000


class Pool(Contract):
    """One token0/token1/fee market."""

    def constructor(
        self,
        ctx: CallContext,
        factory: str,
        token0: str,
        token1: str,
        fee: int,
        tick_spacing: int,
    ) -> None:
        s = ctx.storage
        s.set(FACTORY, factory)
        s.set(TOKEN_0, token0)
        s.set(TOKEN_1, token1)
        s.set(FEE, fee)
        s.set(TICK_SPACING, tick_spacing)
        s.set(MAX_LIQUIDITY_PER_TICK, max_liquidity_per_tick(tick_spacing))
        s.set(INITIALIZED_TICKS, [])
        _save_state(s, PoolSnapshot(Q96, 0, 0, 0, 0))
        guard.initialize(s)

    # -- Token movement ------------------------------------------------

    @staticmethod
    def _pull(ctx: CallContext, token: str, amount: int) -> None:
        if amount == 0:
            return
        if token == NATIVE_TOKEN:
            if ctx.coins < amount:
                raise InsufficientBalanceError("INSUFFICIENT_NATIVE_SENT", f"sent {ctx.coins}, owed {amount}")
            return
        ctx.call(token, "transferFrom", ctx.caller, ctx.callee, TOKEN_ID, amount)

    @staticmethod
    def _push(ctx: CallContext, token: str, to: str, amount: int) -> None:
        if amount == 0:
            return
        if token == NATIVE_TOKEN:
            ctx.transfer_coins(to, amount)
        else:
            ctx.call(token, "transfer", to, TOKEN_ID, amount)

    # -- Liquidity -----------------------------------------------------

    def _check_ticks(self, storage: Storage, tick_lower: int, tick_upper: int) -> None:
        if tick_lower >= tick_upper:
            raise ValidationError("TICK_LOWER_MUST_BE_LESS_THAN_TICK_UPPER")
        if tick_lower < MIN_TICK:
            raise ValidationError("TICK_LOWER_TOO_LOW")
        if tick_upper > MAX_TICK:
            raise ValidationError("TICK_UPPER_TOO_HIGH")
        spacing = storage.get_int(TICK_SPACING)
        if tick_lower % spacing:
            raise ValidationError("TICK_LOWER_NOT_ALIGNED")
        if tick_upper % spacing:
            raise ValidationError("TICK_UPPER_NOT_ALIGNED")

    def _modify_position(
        self,
        ctx: CallContext,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
    ) -> Tuple[int, int]:
        s = ctx.storage
        state = _load_state(s)
        seconds = _seconds(ctx)
        max_liquidity = s.get_int(MAX_LIQUIDITY_PER_TICK)

        lower = _load_tick(s, tick_lower)
        upper = _load_tick(s, tick_upper)
        flipped_lower = update_tick(
            lower, tick_lower, state.tick, liquidity_delta,
            state.fee_growth_global0_x128, state.fee_growth_global1_x128,
            seconds, False, max_liquidity,
        )
        flipped_upper = update_tick(
            upper, tick_upper, state.tick, liquidity_delta,
            state.fee_growth_global0_x128, state.fee_growth_global1_x128,
            seconds, True, max_liquidity,
        )

        inside0, inside1 = fee_growth_inside(
            lower, upper, tick_lower, tick_upper, state.tick,
            state.fee_growth_global0_x128, state.fee_growth_global1_x128,
        )
        position = _load_position(s, owner, tick_lower, tick_upper)
        update_position(position, liquidity_delta, inside0, inside1)

        s.set(tick_key(tick_lower), lower.to_dict())
        s.set(tick_key(tick_upper), upper.to_dict())
        if flipped_lower:
            _set_tick_initialized(s, tick_lower, lower.initialized)
        if flipped_upper:
            _set_tick_initialized(s, tick_upper, upper.initialized)
        s.set(position_key(owner, tick_lower, tick_upper), position.to_dict())

        if tick_lower <= state.tick < tick_upper:
            _save_state(s, replace(state, liquidity=state.liquidity + liquidity_delta))

        return amounts_for_liquidity(
            state.sqrt_price_x96,
            get_sqrt_ratio_at_tick(tick_lower),
            get_sqrt_ratio_at_tick(tick_upper),
            abs(liquidity_delta),
            round_up=liquidity_delta > 0,
        )

    @entry_point("mint")
    def mint(self, ctx: CallContext, recipient: str, tick_lower: int, tick_upper: int, liquidity: int) -> Tuple[int, int]:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            self._check_ticks(s, tick_lower, tick_upper)
            if liquidity <= 0:
                raise ValidationError("LIQUIDITY_ZERO")

            amount0, amount1 = self._modify_position(ctx, recipient, tick_lower, tick_upper, liquidity)
            self._pull(ctx, s.get(TOKEN_0), amount0)
            self._pull(ctx, s.get(TOKEN_1), amount1)

            ctx.emit(f"Mint:{recipient}:{tick_lower}:{tick_upper}:{liquidity}")
            return amount0, amount1

    @entry_point("burn")
    def burn(self, ctx: CallContext, tick_lower: int, tick_upper: int, liquidity: int) -> Tuple[int, int]:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            owner = ctx.caller
            if liquidity < 0:
                raise ValidationError("LIQUIDITY_NEGATIVE")
            position = _load_position(s, owner, tick_lower, tick_upper)
            # a zero burn only credits accrued fees to tokensOwed
            if liquidity == 0 and position.liquidity == 0:
                raise InvariantViolation("POSITION_EMPTY")
            if position.liquidity < liquidity:
                raise InsufficientLiquidityError(
                    "INSUFFICIENT_LIQUIDITY", f"position holds {position.liquidity}"
                )

            amount0, amount1 = self._modify_position(ctx, owner, tick_lower, tick_upper, -liquidity)

            position = _load_position(s, owner, tick_lower, tick_upper)
            position.tokens_owed0 += amount0
            position.tokens_owed1 += amount1
            s.set(position_key(owner, tick_lower, tick_upper), position.to_dict())

            ctx.emit(f"Burn:{owner}:{tick_lower}:{tick_upper}:{liquidity}")
            return amount0, amount1

    @entry_point("collect")
    def collect(
        self,
        ctx: CallContext,
        recipient: str,
        tick_lower: int,
        tick_upper: int,
        amount0_requested: int,
        amount1_requested: int,
    ) -> Tuple[int, int]:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            owner = ctx.caller
            position = _load_position(s, owner, tick_lower, tick_upper)

            amount0 = min(amount0_requested, position.tokens_owed0)
            amount1 = min(amount1_requested, position.tokens_owed1)
            position.tokens_owed0 -= amount0
            position.tokens_owed1 -= amount1
            key = position_key(owner, tick_lower, tick_upper)
            if s.has(key):
                s.set(key, position.to_dict())

            self._push(ctx, s.get(TOKEN_0), recipient, amount0)
            self._push(ctx, s.get(TOKEN_1), recipient, amount1)

            ctx.emit(f"Collect:{recipient}:{tick_lower}:{tick_upper}:{amount0}:{amount1}")
            return amount0, amount1

    # -- Swap ----------------------------------------------------------

    @entry_point("swap")
    def swap(
        self,
        ctx: CallContext,
        recipient: str,
        zero_for_one: bool,
        amount_specified: int,
        sqrt_price_limit_x96: int,
    ) -> Tuple[int, int]:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if amount_specified == 0:
                raise ValidationError("AMOUNT_ZERO")
            if amount_specified < 0:
                raise ValidationError("EXACT_OUTPUT_NOT_IMPLEMENTED")

            state = _load_state(s)
            if zero_for_one:
                if sqrt_price_limit_x96 >= state.sqrt_price_x96:
                    raise ValidationError("PRICE_LIMIT_INVALID")
                if sqrt_price_limit_x96 <= MIN_SQRT_RATIO:
                    raise ValidationError("PRICE_LIMIT_TOO_LOW")
            else:
                if sqrt_price_limit_x96 <= state.sqrt_price_x96:
                    raise ValidationError("PRICE_LIMIT_INVALID")
                if sqrt_price_limit_x96 >= MAX_SQRT_RATIO:
                    raise ValidationError("PRICE_LIMIT_TOO_HIGH")

            step = compute_swap_step(
                state.sqrt_price_x96, sqrt_price_limit_x96, amount_specified, s.get_int(FEE)
            )
            growth = fee_growth_delta(step.fee_amount, state.liquidity)
            fg0 = state.fee_growth_global0_x128
            fg1 = state.fee_growth_global1_x128
            if zero_for_one:
                fg0 = (fg0 + growth) % (1 << 256)
            else:
                fg1 = (fg1 + growth) % (1 << 256)

            new_tick = get_tick_at_sqrt_ratio(step.sqrt_price_next)
            liquidity = self._cross_ticks(ctx, state.tick, new_tick, state.liquidity, fg0, fg1)

            _save_state(s, PoolSnapshot(step.sqrt_price_next, new_tick, liquidity, fg0, fg1))

            token0 = s.get(TOKEN_0)
            token1 = s.get(TOKEN_1)
            if zero_for_one:
                self._pull(ctx, token0, step.amount_in)
                self._push(ctx, token1, recipient, step.amount_out)
            else:
                self._pull(ctx, token1, step.amount_in)
                self._push(ctx, token0, recipient, step.amount_out)

            logger.debug(
                "Swap on %s: %s in, %s out, tick %s -> %s",
                ctx.callee, step.amount_in, step.amount_out, state.tick, new_tick,
            )
            ctx.emit(f"Swap:{recipient}:{str(zero_for_one).lower()}:{step.amount_in}:{step.amount_out}")
            return step.amount_in, step.amount_out

    def _cross_ticks(
        self,
        ctx: CallContext,
        old_tick: int,
        new_tick: int,
        liquidity: int,
        fee_growth_global0_x128: int,
        fee_growth_global1_x128: int,
    ) -> int:
        s = ctx.storage
        ticks: List[int] = s.get(INITIALIZED_TICKS, [])
        if new_tick < old_tick:
            crossed = [t for t in reversed(ticks) if new_tick < t <= old_tick]
        else:
            crossed = [t for t in ticks if old_tick < t <= new_tick]

        seconds = _seconds(ctx)
        for t in crossed:
            info = _load_tick(s, t)
            net = cross(info, fee_growth_global0_x128, fee_growth_global1_x128, seconds)
            s.set(tick_key(t), info.to_dict())
            liquidity = liquidity - net if new_tick < old_tick else liquidity + net
        return liquidity

    # -- Views ---------------------------------------------------------

    @view("getState")
    def get_state(self, ctx: CallContext) -> PoolSnapshot:
        return _load_state(ctx.storage)

    @view("getPoolState")
    def get_pool_state(self, ctx: CallContext) -> PoolInfo:
        s = ctx.storage
        return PoolInfo(
            state=_load_state(s),
            token0=s.get(TOKEN_0),
            token1=s.get(TOKEN_1),
            fee=s.get_int(FEE),
            tick_spacing=s.get_int(TICK_SPACING),
        )

    @view("getSqrtPriceX96")
    def get_sqrt_price_x96(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(SQRT_PRICE_X96)

    @view("getTick")
    def get_tick(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(TICK)

    @view("getLiquidity")
    def get_liquidity(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(LIQUIDITY)

    @view("getTokens")
    def get_tokens(self, ctx: CallContext) -> Tuple[str, str]:
        return ctx.storage.get(TOKEN_0), ctx.storage.get(TOKEN_1)

    @view("getFee")
    def get_fee(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(FEE)

    @view("getTickSpacing")
    def get_tick_spacing(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(TICK_SPACING)

    @view("getFactory")
    def get_factory(self, ctx: CallContext) -> str:
        return ctx.storage.get(FACTORY)

    @view("getPosition")
    def get_position(self, ctx: CallContext, owner: str, tick_lower: int, tick_upper: int) -> PositionInfo:
        return _load_position(ctx.storage, owner, tick_lower, tick_upper)

    @view("getTickInfo")
    def get_tick_info(self, ctx: CallContext, tick: int) -> TickInfo:
        return _load_tick(ctx.storage, tick)

    @view("getInitializedTicks")
    def get_initialized_ticks(self, ctx: CallContext) -> List[int]:
        return ctx.storage.get(INITIALIZED_TICKS, [])

    @view("getFeeGrowthInside")
    def get_fee_growth_inside(self, ctx: CallContext, tick_lower: int, tick_upper: int) -> Tuple[int, int]:
        s = ctx.storage
        state = _load_state(s)
        return fee_growth_inside(
            _load_tick(s, tick_lower), _load_tick(s, tick_upper),
            tick_lower, tick_upper, state.tick,
            state.fee_growth_global0_x128, state.fee_growth_global1_x128,
        )
