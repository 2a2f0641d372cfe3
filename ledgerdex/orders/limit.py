"""Single-shot limit orders, filled automatically once the pool tick crosses the limit."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..amm.swap_math import quote_amount_out
from ..amm.tick_math import sqrt_ratio_from_price, tick_at_price
from ..exceptions import InvariantViolation, NotOwnerError, OrderStateError, ValidationError
from ..host.guard import ReentrancyGuard
from ..host.ledger import Storage
from ..host.runtime import CallContext, entry_point, view
from ..logger import get_logger
from .base import OrderAutomation, record_from, require_record

logger = get_logger(__name__)

BUY = 0
SELL = 1


@dataclass
class LimitOrder:
    id: int
    owner: str
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int
    limit_price: int
    side: int
    expiry: int
    filled: bool = False
    cancelled: bool = False
    expired: bool = False
    amount_out: int = 0
    created_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LimitOrder":
        return cls(**data)


def order_key(order_id: int) -> str:
    return f"limit_order:{order_id}"


class LimitOrderManager(OrderAutomation):
    KIND = "Limit"
    CONFIG_SECTION = "limit"
    TRIGGER = "checkAndExecuteLimitOrders"
    COUNTER_KEY = "ORDER_COUNTER"
    ACTIVE_PREFIX = "pending_order_"
    ACTIVE_COUNT_KEY = "PENDING_ORDERS_COUNT"
    NO_ACTIVE_EVENT = "LimitAutoChecker:NoActiveOrders"

    def _load(self, storage: Storage, entry_id: int) -> Optional[LimitOrder]:
        return record_from(storage.get(order_key(entry_id)), LimitOrder)

    def _save(self, storage: Storage, order: LimitOrder) -> None:
        storage.set(order_key(order.id), order.to_dict())

    def _is_live(self, order: LimitOrder) -> bool:
        return not order.filled and not order.cancelled

    # -- Lifecycle -----------------------------------------------------

    @entry_point("createLimitOrder")
    def create_limit_order(
        self,
        ctx: CallContext,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        limit_price: int,
        side: int,
        expiry: int = 0,
    ) -> int:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if token_in == token_out:
                raise ValidationError("TOKENS_MUST_BE_DIFFERENT")
            if amount_in <= 0:
                raise ValidationError("INVALID_AMOUNT_IN")
            if min_amount_out <= 0:
                raise ValidationError("INVALID_MIN_AMOUNT_OUT")
            if limit_price <= 0:
                raise ValidationError("INVALID_LIMIT_PRICE")
            if side not in (BUY, SELL):
                raise ValidationError("INVALID_ORDER_TYPE", str(side))
            if expiry != 0 and expiry <= ctx.timestamp:
                raise ValidationError("INVALID_EXPIRY", f"{expiry} is not after {ctx.timestamp}")

            self._escrow(ctx, token_in, amount_in)

            order = LimitOrder(
                id=self._next_id(s),
                owner=ctx.caller,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                min_amount_out=min_amount_out,
                limit_price=limit_price,
                side=side,
                expiry=expiry,
                created_at=ctx.timestamp,
            )
            self._save(s, order)

            active = self.active_set(s)
            active.add(order.id)
            self._arm_if_first(ctx, active)

            ctx.emit(f"LimitOrder:Created:{order.id}:{order.owner}:{side}:{limit_price}")
            return order.id

    @entry_point("cancelLimitOrder")
    def cancel_limit_order(self, ctx: CallContext, order_id: int) -> None:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            order = require_record(self._load(s, order_id))
            if order.owner != ctx.caller:
                raise NotOwnerError("NOT_ORDER_OWNER")
            if order.filled:
                raise OrderStateError("ORDER_ALREADY_FILLED")
            if order.cancelled:
                raise OrderStateError("ORDER_ALREADY_CANCELLED")

            order.cancelled = True
            self._save(s, order)
            self.active_set(s).remove(order_id)
            self._release(ctx, order.token_in, order.owner, order.amount_in)

            ctx.emit(f"LimitOrder:Cancelled:{order_id}:{order.owner}")

    @entry_point("executeLimitOrder")
    def execute_limit_order(self, ctx: CallContext, order_id: int) -> int:
        with ReentrancyGuard(ctx.storage):
            order = require_record(self._load(ctx.storage, order_id))
            if order.filled:
                raise OrderStateError("ORDER_ALREADY_FILLED")
            if order.cancelled:
                raise OrderStateError("ORDER_ALREADY_CANCELLED")
            self._try_fill(ctx, order, strict=True)
            return order.amount_out

    @entry_point("checkAndExecuteLimitOrders")
    def check_and_execute_limit_orders(self, ctx: CallContext, wake_sequence: Optional[int] = None) -> None:
        self._run_trigger(ctx, wake_sequence)

    # -- Evaluation ----------------------------------------------------

    def _process(self, ctx: CallContext, order: LimitOrder) -> Tuple[int, int]:
        filled = self._try_fill(ctx, order, strict=False)
        return int(filled), int(filled)

    def _expire(self, ctx: CallContext, order: LimitOrder) -> None:
        order.expired = True
        order.cancelled = True
        self._save(ctx.storage, order)
        self.active_set(ctx.storage).remove(order.id)
        self._release(ctx, order.token_in, order.owner, order.amount_in)
        ctx.emit(f"LimitOrder:Expired:{order.id}:{order.owner}")

    def _try_fill(self, ctx: CallContext, order: LimitOrder, strict: bool) -> bool:
        """
        Fill ``order`` if its conditions hold.

        With ``strict`` every unmet condition raises; otherwise the order is
        left as it is (or expired) and False is returned.
        """
        if order.expiry and ctx.timestamp > order.expiry:
            if strict:
                raise OrderStateError("ORDER_EXPIRED")
            self._expire(ctx, order)
            return False

        pool = self._find_pool(ctx, order.token_in, order.token_out)
        state = ctx.call(pool, "getState")
        limit_tick = tick_at_price(order.limit_price)
        if order.side == BUY:
            price_met = state.tick <= limit_tick
        else:
            price_met = state.tick >= limit_tick
        if not price_met:
            if strict:
                raise InvariantViolation("PRICE_LIMIT_NOT_MET", f"tick {state.tick}, limit tick {limit_tick}")
            return False

        quoted = quote_amount_out(order.amount_in, ctx.call(pool, "getFee"))
        if quoted < order.min_amount_out:
            if strict:
                raise InvariantViolation("INSUFFICIENT_OUTPUT_AMOUNT", f"quoted {quoted}")
            ctx.emit(f"LimitOrder:BelowMinimum:{order.id}:{quoted}")
            return False

        amount_out = self._swap(
            ctx, pool, order.token_in, order.token_out, order.amount_in, order.owner,
            sqrt_ratio_from_price(order.limit_price),
        )
        if amount_out < order.min_amount_out:
            raise InvariantViolation("INSUFFICIENT_OUTPUT_AMOUNT", f"received {amount_out}")

        order.filled = True
        order.amount_out = amount_out
        self._save(ctx.storage, order)
        self.active_set(ctx.storage).remove(order.id)

        logger.info("Limit order %s filled: %s in, %s out", order.id, order.amount_in, amount_out)
        ctx.emit(f"LimitOrder:Executed:{order.id}:{order.owner}:{order.amount_in}:{amount_out}")
        return True

    # -- Views ---------------------------------------------------------

    @view("getOrder")
    def get_order(self, ctx: CallContext, order_id: int) -> LimitOrder:
        return require_record(self._load(ctx.storage, order_id))

    @view("getOrderCount")
    def get_order_count(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(self.COUNTER_KEY)

    @view("getPendingOrdersCount")
    def get_pending_orders_count(self, ctx: CallContext) -> int:
        return len(self.active_set(ctx.storage))

    @view("getPendingOrders")
    def get_pending_orders(self, ctx: CallContext) -> List[int]:
        return self.active_set(ctx.storage).ids()

    @view("getUserOrders")
    def get_user_orders(self, ctx: CallContext, owner: str, limit: int = 100) -> List[LimitOrder]:
        return [o for o in self._iter_records(ctx.storage) if o.owner == owner][:limit]

    @view("getOrdersByTokenPair")
    def get_orders_by_token_pair(self, ctx: CallContext, token_in: str, token_out: str, limit: int = 50) -> List[LimitOrder]:
        return [
            o for o in self._iter_records(ctx.storage)
            if o.token_in == token_in and o.token_out == token_out
        ][:limit]
