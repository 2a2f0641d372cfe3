"""Recurring (DCA) orders: a fixed amount swapped every N periods, a fixed number of times."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import NotOwnerError, OrderStateError, ValidationError
from ..host.guard import ReentrancyGuard
from ..host.ledger import Storage
from ..host.runtime import CallContext, entry_point, view
from ..logger import get_logger
from .base import OrderAutomation, record_from, require_record

logger = get_logger(__name__)


@dataclass
class RecurringOrder:
    id: int
    owner: str
    token_in: str
    token_out: str
    amount_per_execution: int
    interval_periods: int
    total_executions: int
    executed_count: int = 0
    last_execution_period: int = 0
    active: bool = True
    cancelled: bool = False

    @property
    def remaining_executions(self) -> int:
        return self.total_executions - self.executed_count

    @property
    def complete(self) -> bool:
        return self.executed_count >= self.total_executions

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurringOrder":
        return cls(**data)


def order_key(order_id: int) -> str:
    return f"recurring_order:{order_id}"


class RecurringOrderManager(OrderAutomation):
    KIND = "Recurring"
    CONFIG_SECTION = "recurring"
    TRIGGER = "checkAndExecuteRecurringOrders"
    COUNTER_KEY = "ORDER_ID_COUNTER"
    ACTIVE_PREFIX = "active_order_"
    ACTIVE_COUNT_KEY = "ACTIVE_ORDERS_COUNT"
    NO_ACTIVE_EVENT = "RecurringAutoChecker:NoActiveOrders"

    def _load(self, storage: Storage, entry_id: int) -> Optional[RecurringOrder]:
        return record_from(storage.get(order_key(entry_id)), RecurringOrder)

    def _save(self, storage: Storage, order: RecurringOrder) -> None:
        storage.set(order_key(order.id), order.to_dict())

    def _is_live(self, order: RecurringOrder) -> bool:
        return order.active and not order.cancelled

    def _rearm_delay(self, ctx: CallContext) -> int:
        """Shortest interval among live orders, capped by the configured default."""
        delay = self.settings(ctx).check_interval_periods
        s = ctx.storage
        for order_id in self.active_set(s).ids():
            order = self._load(s, order_id)
            if order is not None and self._is_live(order):
                delay = min(delay, order.interval_periods)
        return delay

    def _summary_event(self, processed: int, executed: int, completed: int) -> str:
        return f"RecurringAutoChecker:Processed:{processed}:Executed:{executed}:Completed:{completed}"

    # -- Lifecycle -----------------------------------------------------

    @entry_point("createRecurringOrder")
    def create_recurring_order(
        self,
        ctx: CallContext,
        token_in: str,
        token_out: str,
        amount_per_execution: int,
        interval_periods: int,
        total_executions: int,
    ) -> int:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if token_in == token_out:
                raise ValidationError("IDENTICAL_TOKENS")
            if amount_per_execution <= 0:
                raise ValidationError("INVALID_AMOUNT")
            if interval_periods <= 0:
                raise ValidationError("INVALID_INTERVAL")
            if total_executions <= 0:
                raise ValidationError("INVALID_TOTAL_EXECUTIONS")

            self._escrow(ctx, token_in, amount_per_execution * total_executions)

            order = RecurringOrder(
                id=self._next_id(s),
                owner=ctx.caller,
                token_in=token_in,
                token_out=token_out,
                amount_per_execution=amount_per_execution,
                interval_periods=interval_periods,
                total_executions=total_executions,
                last_execution_period=ctx.period,
            )
            self._save(s, order)

            active = self.active_set(s)
            active.add(order.id)
            self._arm_if_first(ctx, active)

            ctx.emit(f"RecurringOrder:Created:{order.id}:{order.owner}:{interval_periods}:{total_executions}")
            return order.id

    @entry_point("cancelRecurringOrder")
    def cancel_recurring_order(self, ctx: CallContext, order_id: int) -> None:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            order = require_record(self._load(s, order_id))
            if order.owner != ctx.caller:
                raise NotOwnerError("NOT_ORDER_OWNER")
            if not order.active:
                raise OrderStateError("ORDER_NOT_ACTIVE")

            order.active = False
            order.cancelled = True
            self._save(s, order)
            self.active_set(s).remove(order_id)
            self._release(ctx, order.token_in, order.owner, order.amount_per_execution * order.remaining_executions)

            ctx.emit(f"RecurringOrder:Cancelled:{order_id}:{order.owner}")

    @entry_point("checkAndExecuteRecurringOrders")
    def check_and_execute_recurring_orders(self, ctx: CallContext, wake_sequence: Optional[int] = None) -> None:
        self._run_trigger(ctx, wake_sequence)

    def _process(self, ctx: CallContext, order: RecurringOrder) -> Tuple[int, int]:
        if ctx.period - order.last_execution_period < order.interval_periods:
            return 0, 0

        pool = self._find_pool(ctx, order.token_in, order.token_out)
        amount_out = self._swap(
            ctx, pool, order.token_in, order.token_out, order.amount_per_execution, order.owner
        )

        order.executed_count += 1
        order.last_execution_period = ctx.period
        ctx.emit(f"RecurringAutoExecuted:{order.id}:{order.owner}:{order.executed_count}:{amount_out}")

        completed = 0
        if order.complete:
            order.active = False
            self.active_set(ctx.storage).remove(order.id)
            completed = 1
            logger.info("Recurring order %s completed after %s executions", order.id, order.executed_count)
            ctx.emit(f"RecurringOrder:Completed:{order.id}")

        self._save(ctx.storage, order)
        return 1, completed

    # -- Views ---------------------------------------------------------

    @view("getRecurringOrder")
    def get_recurring_order(self, ctx: CallContext, order_id: int) -> RecurringOrder:
        return require_record(self._load(ctx.storage, order_id))

    @view("getActiveOrdersCount")
    def get_active_orders_count(self, ctx: CallContext) -> int:
        return len(self.active_set(ctx.storage))

    @view("getActiveOrders")
    def get_active_orders(self, ctx: CallContext) -> List[int]:
        return self.active_set(ctx.storage).ids()

    @view("getOrderCount")
    def get_order_count(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(self.COUNTER_KEY)

    @view("getUserOrders")
    def get_user_orders(self, ctx: CallContext, owner: str, limit: int = 100) -> List[RecurringOrder]:
        return [o for o in self._iter_records(ctx.storage) if o.owner == owner][:limit]

    @view("getOrderProgress")
    def get_order_progress(self, ctx: CallContext, order_id: int) -> Tuple[int, int, bool, bool]:
        order = require_record(self._load(ctx.storage, order_id))
        return order.executed_count, order.total_executions, order.active, order.complete

    @view("getOrdersByTokenPair")
    def get_orders_by_token_pair(
        self, ctx: CallContext, token_in: str, token_out: str, limit: int = 50
    ) -> List[RecurringOrder]:
        return [
            o for o in self._iter_records(ctx.storage)
            if o.token_in == token_in and o.token_out == token_out
        ][:limit]

    @view("getCompletedOrdersCount")
    def get_completed_orders_count(self, ctx: CallContext) -> int:
        return sum(1 for o in self._iter_records(ctx.storage) if o.complete)
