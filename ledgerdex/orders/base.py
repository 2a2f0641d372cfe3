"""
Shared machinery for the self-scheduling order managers.

Each manager escrows user funds, keeps its live entries in an
:class:`ActiveSet`, and runs a trigger that walks a capped window of that
set, swaps against the factory's pools when an entry is due, and then
re-arms itself with a :class:`WakeRequest` while work remains.

Every scheduled message carries the wake sequence current when it was
sent. Arming or disarming bumps the sequence, so an older message that is
still queued becomes a no-op and only one chain stays live.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, Optional, Tuple

from ..amm.tick_math import MAX_SQRT_RATIO, MIN_SQRT_RATIO
from ..config import SchedulerConfig
from ..constants import NATIVE_TOKEN, TOKEN_ID
from ..exceptions import DexError, InsufficientBalanceError, OrderStateError, PoolNotFoundError
from ..host import guard
from ..host.guard import ReentrancyGuard
from ..host.ledger import Storage
from ..host.ownership import only_owner, owner_of, set_owner
from ..host.runtime import CallContext, Contract, Slot, WakeRequest, entry_point, view
from ..logger import get_logger
from .active_set import ActiveSet

logger = get_logger(__name__)

FACTORY_ADDRESS = "FACTORY_ADDRESS"
BOT_COUNTER = "BOT_EXECUTION_COUNT"
WAKE_SEQUENCE = "WAKE_SEQUENCE"


class OrderAutomation(Contract):
    """
    Template for a manager contract.

    Subclasses name their storage layout and events through the class
    attributes below and implement ``_load``, ``_is_live`` and ``_process``.
    """

    KIND = ""
    CONFIG_SECTION = ""
    TRIGGER = ""
    COUNTER_KEY = ""
    ACTIVE_PREFIX = ""
    ACTIVE_COUNT_KEY = ""
    NO_ACTIVE_EVENT = ""

    def constructor(self, ctx: CallContext, factory: str) -> None:
        s = ctx.storage
        set_owner(s, ctx.caller)
        s.set(FACTORY_ADDRESS, factory)
        s.set(self.COUNTER_KEY, 0)
        s.set(self.ACTIVE_COUNT_KEY, 0)
        s.set(BOT_COUNTER, 0)
        s.set(WAKE_SEQUENCE, 0)
        guard.initialize(s)
        ctx.emit(f"{self.KIND}OrderManager:Initialized:{factory}")

    # -- Hooks ---------------------------------------------------------

    def _load(self, storage: Storage, entry_id: int) -> Optional[Any]:
        raise NotImplementedError

    def _is_live(self, record: Any) -> bool:
        raise NotImplementedError

    def _process(self, ctx: CallContext, record: Any) -> Tuple[int, int]:
        """Handle one due entry; returns (executed, completed)."""
        raise NotImplementedError

    def _rearm_delay(self, ctx: CallContext) -> int:
        return self.settings(ctx).check_interval_periods

    def _summary_event(self, processed: int, executed: int, completed: int) -> str:
        return f"{self.KIND}AutoChecker:Processed:{processed}:Executed:{executed}"

    # -- Helpers -------------------------------------------------------

    def settings(self, ctx: CallContext) -> SchedulerConfig:
        return getattr(ctx.config, self.CONFIG_SECTION)

    def active_set(self, storage: Storage) -> ActiveSet:
        return ActiveSet(storage, self.ACTIVE_PREFIX, self.ACTIVE_COUNT_KEY)

    def _next_id(self, storage: Storage) -> int:
        return storage.increment(self.COUNTER_KEY)

    def _iter_records(self, storage: Storage) -> Iterator[Any]:
        for entry_id in range(1, storage.get_int(self.COUNTER_KEY) + 1):
            record = self._load(storage, entry_id)
            if record is not None:
                yield record

    def _find_pool(self, ctx: CallContext, token_a: str, token_b: str) -> str:
        factory = ctx.storage.get(FACTORY_ADDRESS)
        pool = ctx.call(factory, "getPool", token_a, token_b, self.settings(ctx).default_fee)
        if not pool:
            raise PoolNotFoundError("POOL_NOT_FOUND", f"{token_a}/{token_b}")
        return pool

    @staticmethod
    def _escrow(ctx: CallContext, token: str, amount: int) -> None:
        """Pull ``amount`` of ``token`` from the caller into this contract."""
        if token == NATIVE_TOKEN:
            if ctx.coins < amount:
                raise InsufficientBalanceError("INSUFFICIENT_NATIVE_SENT", f"sent {ctx.coins}, owed {amount}")
            return
        ctx.call(token, "transferFrom", ctx.caller, ctx.callee, TOKEN_ID, amount)

    @staticmethod
    def _release(ctx: CallContext, token: str, to: str, amount: int) -> None:
        if amount <= 0:
            return
        if token == NATIVE_TOKEN:
            ctx.transfer_coins(to, amount)
        else:
            ctx.call(token, "transfer", to, TOKEN_ID, amount)

    def _swap(
        self,
        ctx: CallContext,
        pool: str,
        token_in: str,
        token_out: str,
        amount: int,
        recipient: str,
        target_sqrt_price_x96: Optional[int] = None,
    ) -> int:
        """
        Swap escrowed ``token_in`` on ``pool``; returns the output amount.

        The price limit heads toward ``target_sqrt_price_x96`` but always
        sits at least one unit past the current price, so a swap whose
        condition already holds is never rejected as an invalid limit.
        """
        state = ctx.call(pool, "getState")
        current = state.sqrt_price_x96
        zero_for_one = token_in < token_out
        if zero_for_one:
            limit = current - 1 if target_sqrt_price_x96 is None else min(target_sqrt_price_x96, current - 1)
            limit = max(limit, MIN_SQRT_RATIO + 1)
        else:
            limit = current + 1 if target_sqrt_price_x96 is None else max(target_sqrt_price_x96, current + 1)
            limit = min(limit, MAX_SQRT_RATIO - 1)

        coins = 0
        if token_in == NATIVE_TOKEN:
            coins = amount
        else:
            ctx.call(token_in, "approve", pool, TOKEN_ID, amount)

        _, amount_out = ctx.call(pool, "swap", recipient, zero_for_one, amount, limit, coins=coins)
        return amount_out

    # -- Scheduling ----------------------------------------------------

    def next_slot(self, ctx: CallContext) -> Slot:
        thread = ctx.thread + 1
        if thread >= ctx.config.host.threads_per_period:
            return Slot(ctx.period + self._rearm_delay(ctx), 0)
        return Slot(ctx.period, thread)

    def arm(self, ctx: CallContext, next_slot: Slot) -> int:
        """Queue the trigger for ``next_slot``; any earlier queued wake goes stale."""
        s = ctx.storage
        settings = self.settings(ctx)
        sequence = s.increment(WAKE_SEQUENCE)
        ctx.send_message(
            WakeRequest(
                target=ctx.callee,
                function=self.TRIGGER,
                validity_start=next_slot,
                validity_end=Slot(next_slot.period + settings.validity_periods, next_slot.thread),
                max_gas=settings.gas_budget,
                coins=0,
                payload=(sequence,),
            )
        )
        count = s.increment(BOT_COUNTER)
        ctx.emit(f"{self.KIND}AutoScheduled:Period:{next_slot.period}:Thread:{next_slot.thread}:Count:{count}")
        return sequence

    def disarm(self, ctx: CallContext) -> None:
        ctx.storage.increment(WAKE_SEQUENCE)
        ctx.emit(f"{self.KIND}AutoScheduled:Disarmed")

    def _arm_if_first(self, ctx: CallContext, active: ActiveSet) -> None:
        if len(active) == 1:
            self.arm(ctx, self.next_slot(ctx))

    def _run_trigger(self, ctx: CallContext, wake_sequence: Optional[int]) -> None:
        with ReentrancyGuard(ctx.storage):
            s = ctx.storage
            if wake_sequence is not None and wake_sequence != s.get_int(WAKE_SEQUENCE):
                logger.debug("%s ignoring stale wake %s at %s", self.KIND, wake_sequence, ctx.slot)
                return

            active = self.active_set(s)
            if not len(active):
                ctx.emit(self.NO_ACTIVE_EVENT)
                return

            processed = executed = completed = 0
            for entry_id in active.window(self.settings(ctx).max_per_check):
                record = self._load(s, entry_id)
                if record is None or not self._is_live(record):
                    active.remove(entry_id)
                    continue
                try:
                    with ctx.atomic():
                        did_execute, did_complete = self._process(ctx, record)
                except DexError as exc:
                    logger.warning("%s entry %s skipped at %s: %s", self.KIND, entry_id, ctx.slot, exc)
                    ctx.emit(f"{self.KIND}AutoExecute:Skipped:{entry_id}:{exc.code}")
                else:
                    executed += did_execute
                    completed += did_complete
                processed += 1

            ctx.emit(self._summary_event(processed, executed, completed))

            if len(active):
                self.arm(ctx, self.next_slot(ctx))

    # -- Owner controls ------------------------------------------------

    @entry_point("startAutomation")
    def start_automation(self, ctx: CallContext) -> None:
        only_owner(ctx)
        self.arm(ctx, self.next_slot(ctx))

    @entry_point("stopAutomation")
    def stop_automation(self, ctx: CallContext) -> None:
        only_owner(ctx)
        self.disarm(ctx)

    # -- Common views --------------------------------------------------

    @view("getBotExecutionCount")
    def get_bot_execution_count(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(BOT_COUNTER)

    @view("getFactoryAddress")
    def get_factory_address(self, ctx: CallContext) -> str:
        return ctx.storage.get(FACTORY_ADDRESS)

    @view("getOwner")
    def get_owner(self, ctx: CallContext) -> str:
        return owner_of(ctx.storage)


def require_record(record: Optional[Any], code: str = "ORDER_NOT_FOUND") -> Any:
    if record is None:
        raise OrderStateError(code)
    return record


def record_from(data: Optional[Dict[str, Any]], cls: type) -> Optional[Any]:
    return cls.from_dict(data) if data else None
