"""
Pool factory.

Keeps the fee → tick-spacing table and one pool per sorted token pair and
fee tier. Pools are deployed by the factory itself, so their address is
only known once ``createPool`` returns.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ..exceptions import ValidationError
from ..host import guard
from ..host.guard import ReentrancyGuard
from ..host.ownership import only_owner, owner_of, set_owner
from ..host.runtime import CallContext, Contract, entry_point, view
from ..logger import get_logger
from .pool import Pool

logger = get_logger(__name__)

DEFAULT_FEE_AMOUNTS = ((500, 10), (3000, 60), (10000, 200))
MAX_FEE = 1_000_000
MAX_TICK_SPACING = 16384
POOL_COUNT = "POOL_COUNT"


def sort_tokens(token_a: str, token_b: str) -> Tuple[str, str]:
    return (token_a, token_b) if token_a < token_b else (token_b, token_a)


def pool_key(token_a: str, token_b: str, fee: int) -> str:
    token0, token1 = sort_tokens(token_a, token_b)
    return f"pool:{token0}:{token1}:{fee}"


def fee_key(fee: int) -> str:
    return f"fee_amount_tick_spacing:{fee}"


class Factory(Contract):

    def constructor(self, ctx: CallContext) -> None:
        s = ctx.storage
        set_owner(s, ctx.caller)
        for fee, spacing in DEFAULT_FEE_AMOUNTS:
            s.set(fee_key(fee), spacing)
            ctx.emit(f"FeeAmountEnabled:{fee}:{spacing}")
        s.set(POOL_COUNT, 0)
        guard.initialize(s)

    @entry_point("createPool")
    def create_pool(self, ctx: CallContext, token_a: str, token_b: str, fee: int) -> str:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if token_a == token_b:
                raise ValidationError("IDENTICAL_TOKENS")
            token0, token1 = sort_tokens(token_a, token_b)

            tick_spacing = s.get_int(fee_key(fee))
            if tick_spacing <= 0:
                raise ValidationError("FEE_NOT_ENABLED", str(fee))

            key = pool_key(token0, token1, fee)
            if s.has(key):
                raise ValidationError("POOL_ALREADY_EXISTS", s.get(key))

            pool = ctx.deploy(Pool, ctx.callee, token0, token1, fee, tick_spacing)
            s.set(key, pool)
            s.increment(POOL_COUNT)

            logger.info("Created pool %s for %s/%s fee %s", pool, token0, token1, fee)
            ctx.emit(f"PoolCreated:{token0}:{token1}:{fee}:{tick_spacing}:{pool}")
            return pool

    @entry_point("enableFeeAmount")
    def enable_fee_amount(self, ctx: CallContext, fee: int, tick_spacing: int) -> None:
        only_owner(ctx)
        s = ctx.storage
        if fee >= MAX_FEE:
            raise ValidationError("FEE_TOO_HIGH")
        if tick_spacing <= 0:
            raise ValidationError("INVALID_TICK_SPACING")
        if tick_spacing > MAX_TICK_SPACING:
            raise ValidationError("TICK_SPACING_TOO_WIDE")
        if s.get_int(fee_key(fee)) != 0:
            raise ValidationError("FEE_ALREADY_ENABLED")

        s.set(fee_key(fee), tick_spacing)
        ctx.emit(f"FeeAmountEnabled:{fee}:{tick_spacing}")

    @view("getPool")
    def get_pool(self, ctx: CallContext, token_a: str, token_b: str, fee: int) -> str:
        return ctx.storage.get(pool_key(token_a, token_b, fee), "")

    @view("isPoolExist")
    def is_pool_exist(self, ctx: CallContext, token_a: str, token_b: str, fee: int) -> bool:
        return ctx.storage.has(pool_key(token_a, token_b, fee))

    @view("feeAmountTickSpacing")
    def fee_amount_tick_spacing(self, ctx: CallContext, fee: int) -> int:
        return ctx.storage.get_int(fee_key(fee))

    @view("getPoolCount")
    def get_pool_count(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(POOL_COUNT)

    @view("getOwner")
    def get_owner(self, ctx: CallContext) -> Optional[str]:
        return owner_of(ctx.storage)
