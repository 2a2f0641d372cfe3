"""
Grid orders.

A grid spreads ``gridLevels`` evenly spaced price levels over
``[lowerPrice, upperPrice]``. When the pool price sits at or below a level
and within half a step of it, that level buys tokenOut with the grid's
tokenIn inventory. Once the price is at or above the level, however far,
the level sells what it bought. A level trades at most once per period and
alternates between the two sides.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..amm.tick_math import price_from_sqrt_ratio, sqrt_ratio_from_price
from ..constants import GRID_MAX_LEVELS, GRID_MIN_LEVELS
from ..exceptions import NotOwnerError, OrderStateError, ValidationError
from ..host.guard import ReentrancyGuard
from ..host.ledger import Storage
from ..host.runtime import CallContext, entry_point, view
from ..logger import get_logger
from .base import OrderAutomation, record_from, require_record

logger = get_logger(__name__)

IDLE = 0
BUY_PENDING = 1
SELL_PENDING = 2


@dataclass
class GridOrder:
    id: int
    owner: str
    token_in: str
    token_out: str
    grid_levels: int
    lower_price: int
    upper_price: int
    amount_per_level: int
    active: bool = True
    cancelled: bool = False
    balance_in: int = 0
    balance_out: int = 0

    @property
    def step(self) -> int:
        return (self.upper_price - self.lower_price) // (self.grid_levels - 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridOrder":
        return cls(**data)


@dataclass
class GridLevel:
    price: int
    amount: int
    status: int = IDLE
    last_fill_period: int = 0
    holding: int = 0
    fills: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridLevel":
        return cls(**data)


def grid_key(grid_id: int) -> str:
    return f"grid:{grid_id}"


def level_key(grid_id: int, index: int) -> str:
    return f"grid:{grid_id}:level:{index}"


class GridOrderManager(OrderAutomation):
    KIND = "Grid"
    CONFIG_SECTION = "grid"
    TRIGGER = "checkAndExecuteGridOrders"
    COUNTER_KEY = "GRID_ID_COUNTER"
    ACTIVE_PREFIX = "active_grid_"
    ACTIVE_COUNT_KEY = "ACTIVE_GRIDS_COUNT"
    NO_ACTIVE_EVENT = "GridAutoChecker:NoActiveGrids"

    def _load(self, storage: Storage, entry_id: int) -> Optional[GridOrder]:
        return record_from(storage.get(grid_key(entry_id)), GridOrder)

    def _save(self, storage: Storage, grid: GridOrder) -> None:
        storage.set(grid_key(grid.id), grid.to_dict())

    def _load_level(self, storage: Storage, grid_id: int, index: int) -> Optional[GridLevel]:
        return record_from(storage.get(level_key(grid_id, index)), GridLevel)

    def _is_live(self, grid: GridOrder) -> bool:
        return grid.active and not grid.cancelled

    # -- Lifecycle -----------------------------------------------------

    @entry_point("createGridOrder")
    def create_grid_order(
        self,
        ctx: CallContext,
        token_in: str,
        token_out: str,
        grid_levels: int,
        lower_price: int,
        upper_price: int,
        amount_per_level: int,
    ) -> int:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if token_in == token_out:
                raise ValidationError("IDENTICAL_TOKENS")
            if grid_levels < GRID_MIN_LEVELS:
                raise ValidationError("MIN_2_LEVELS")
            if grid_levels > GRID_MAX_LEVELS:
                raise ValidationError("MAX_50_LEVELS")
            if lower_price <= 0 or lower_price >= upper_price:
                raise ValidationError("INVALID_PRICE_RANGE")
            if amount_per_level <= 0:
                raise ValidationError("INVALID_AMOUNT")

            total = amount_per_level * grid_levels
            self._escrow(ctx, token_in, total)

            grid = GridOrder(
                id=self._next_id(s),
                owner=ctx.caller,
                token_in=token_in,
                token_out=token_out,
                grid_levels=grid_levels,
                lower_price=lower_price,
                upper_price=upper_price,
                amount_per_level=amount_per_level,
                balance_in=total,
            )
            self._save(s, grid)
            for i in range(grid_levels):
                level = GridLevel(price=lower_price + i * grid.step, amount=amount_per_level)
                s.set(level_key(grid.id, i), level.to_dict())

            active = self.active_set(s)
            active.add(grid.id)
            self._arm_if_first(ctx, active)

            ctx.emit(f"GridOrder:Created:{grid.id}:{grid.owner}:{grid_levels}:{lower_price}:{upper_price}")
            return grid.id

    @entry_point("cancelGridOrder")
    def cancel_grid_order(self, ctx: CallContext, grid_id: int) -> None:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            grid = require_record(self._load(s, grid_id), "GRID_NOT_FOUND")
            if grid.owner != ctx.caller:
                raise NotOwnerError("NOT_GRID_OWNER")
            if not grid.active:
                raise OrderStateError("GRID_NOT_ACTIVE")

            refund_in, refund_out = grid.balance_in, grid.balance_out
            grid.active = False
            grid.cancelled = True
            grid.balance_in = 0
            grid.balance_out = 0
            self._save(s, grid)
            self.active_set(s).remove(grid_id)

            self._release(ctx, grid.token_in, grid.owner, refund_in)
            self._release(ctx, grid.token_out, grid.owner, refund_out)

            ctx.emit(f"GridOrder:Cancelled:{grid_id}:{grid.owner}")

    @entry_point("checkAndExecuteGridOrders")
    def check_and_execute_grid_orders(self, ctx: CallContext, wake_sequence: Optional[int] = None) -> None:
        self._run_trigger(ctx, wake_sequence)

    # -- Evaluation ----------------------------------------------------

    def _process(self, ctx: CallContext, grid: GridOrder) -> Tuple[int, int]:
        s = ctx.storage
        pool = self._find_pool(ctx, grid.token_in, grid.token_out)
        price = price_from_sqrt_ratio(ctx.call(pool, "getState").sqrt_price_x96)
        step = grid.step

        executed = 0
        for i in range(grid.grid_levels):
            level = self._load_level(s, grid.id, i)
            if level is None:
                continue
            if level.fills and level.last_fill_period == ctx.period:
                continue

            # buys need the price within half a step; a held level sells anywhere above it
            near = abs(price - level.price) * 2 <= step
            if near and price <= level.price and level.status != BUY_PENDING:
                if grid.balance_in < level.amount:
                    continue
                bought = self._swap(
                    ctx, pool, grid.token_in, grid.token_out, level.amount, ctx.callee,
                    sqrt_ratio_from_price(level.price),
                )
                grid.balance_in -= level.amount
                grid.balance_out += bought
                level.holding += bought
                level.status = BUY_PENDING
                event = "BuyExecuted"
            elif price >= level.price and level.status != SELL_PENDING and level.holding > 0:
                sold = level.holding
                proceeds = self._swap(
                    ctx, pool, grid.token_out, grid.token_in, sold, ctx.callee,
                    sqrt_ratio_from_price(level.price),
                )
                grid.balance_out -= sold
                grid.balance_in += proceeds
                level.holding = 0
                level.status = SELL_PENDING
                event = "SellExecuted"
            else:
                continue

            level.last_fill_period = ctx.period
            level.fills += 1
            s.set(level_key(grid.id, i), level.to_dict())
            executed += 1
            ctx.emit(f"Grid:{event}:{grid.id}:Level:{i}:Price:{level.price}")

        if executed:
            self._save(s, grid)
            logger.debug("Grid %s filled %s level(s) at price %s", grid.id, executed, price)
        return executed, 0

    # -- Views ---------------------------------------------------------

    @view("getGridOrder")
    def get_grid_order(self, ctx: CallContext, grid_id: int) -> GridOrder:
        return require_record(self._load(ctx.storage, grid_id), "GRID_NOT_FOUND")

    @view("getGridLevel")
    def get_grid_level(self, ctx: CallContext, grid_id: int, index: int) -> GridLevel:
        return require_record(self._load_level(ctx.storage, grid_id, index), "LEVEL_NOT_FOUND")

    @view("getActiveGridsCount")
    def get_active_grids_count(self, ctx: CallContext) -> int:
        return len(self.active_set(ctx.storage))

    @view("getActiveGrids")
    def get_active_grids(self, ctx: CallContext) -> List[int]:
        return self.active_set(ctx.storage).ids()

    @view("getUserGrids")
    def get_user_grids(self, ctx: CallContext, owner: str, limit: int = 100) -> List[GridOrder]:
        return [g for g in self._iter_records(ctx.storage) if g.owner == owner][:limit]

    @view("getGridCount")
    def get_grid_count(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(self.COUNTER_KEY)

    @view("getCancelledGridsCount")
    def get_cancelled_grids_count(self, ctx: CallContext) -> int:
        return sum(1 for g in self._iter_records(ctx.storage) if g.cancelled)
