"""
Test suite for the limit order manager

Covers:
  - order validation and escrow
  - manual, strict and automatic execution once the pool price crosses the limit
  - minimum-output and expiry handling
  - cancellation and refunds
  - wake chain: first-order arming, stale wakes, owner stop/start
  - capped round-robin scans and skipped entries
"""

import pytest

from ledgerdex.amm.tick_math import PRICE_SCALE, sqrt_ratio_from_price
from ledgerdex.config import EngineConfig
from ledgerdex.constants import TOKEN_ID
from ledgerdex.exceptions import (
    InvariantViolation,
    NotOwnerError,
    OrderStateError,
    PoolNotFoundError,
    ValidationError,
)
from ledgerdex.host import Host, Slot
from ledgerdex.orders import LimitOrderManager
from ledgerdex.orders.limit import BUY, SELL, LimitOrder
from ledgerdex.tokens import MultiToken

from conftest import ALICE, BOB, OWNER, USER_FUNDS

HIGH_PRICE = 2 * PRICE_SCALE
LOW_PRICE = PRICE_SCALE // 2


@pytest.fixture
def manager(funded_dex):
    dex = funded_dex
    address = dex.host.deploy(OWNER, LimitOrderManager, dex.factory)
    for who in (ALICE, BOB):
        dex.approve(who, dex.token0, address)
        dex.approve(who, dex.token1, address)
    return address


def move_price(dex, price):
    """BOB trades the pool to ``price``."""
    zero_for_one = sqrt_ratio_from_price(price) < dex.state().sqrt_price_x96
    token_in = dex.token0 if zero_for_one else dex.token1
    dex.approve(BOB, token_in, dex.pool)
    dex.host.call(BOB, dex.pool, "swap", BOB, zero_for_one, 10**6, sqrt_ratio_from_price(price))


def sell_order(dex, manager, limit_price=HIGH_PRICE, amount_in=5, min_out=1, expiry=0):
    return dex.host.call(
        ALICE, manager, "createLimitOrder", dex.token0, dex.token1, amount_in, min_out, limit_price, SELL, expiry
    )


def get_order(dex, manager, order_id) -> LimitOrder:
    return dex.host.view(manager, "getOrder", order_id)


def check(dex, manager):
    dex.host.call(BOB, manager, "checkAndExecuteLimitOrders")


# ============================================================================
# Creation
# ============================================================================

class TestCreate:

    def test_initialized_event(self, funded_dex, manager):
        host = funded_dex.host
        assert host.events_from(manager) == [f"LimitOrderManager:Initialized:{funded_dex.factory}"]
        assert host.view(manager, "getFactoryAddress") == funded_dex.factory
        assert host.view(manager, "getOwner") == OWNER

    def test_escrow_and_record(self, funded_dex, manager):
        dex = funded_dex
        order_id = sell_order(dex, manager)
        assert order_id == 1

        assert dex.balance(dex.token0, ALICE) == USER_FUNDS - 5
        assert dex.balance(dex.token0, manager) == 5

        order = get_order(dex, manager, order_id)
        assert (order.owner, order.token_in, order.token_out) == (ALICE, dex.token0, dex.token1)
        assert (order.amount_in, order.min_amount_out, order.limit_price, order.side) == (5, 1, HIGH_PRICE, SELL)
        assert not (order.filled or order.cancelled or order.expired)

        assert dex.host.view(manager, "getOrderCount") == 1
        assert dex.host.view(manager, "getPendingOrdersCount") == 1
        assert dex.host.view(manager, "getPendingOrders") == [1]
        assert dex.host.events_from(manager, "LimitOrder:Created:") == [
            f"LimitOrder:Created:1:{ALICE}:{SELL}:{HIGH_PRICE}"
        ]

    def test_first_order_arms_the_trigger(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        sell_order(dex, manager)

        [wake] = dex.host.pending_messages()
        assert wake.target == manager
        assert wake.function == "checkAndExecuteLimitOrders"
        assert wake.validity_start == Slot(0, 1)
        assert wake.payload == (1,)
        assert dex.host.view(manager, "getBotExecutionCount") == 1
        assert dex.host.events_from(manager, "LimitAutoScheduled:") == [
            "LimitAutoScheduled:Period:0:Thread:1:Count:1"
        ]

    @pytest.mark.parametrize("field,value,code", [
        ("token_out", None, "TOKENS_MUST_BE_DIFFERENT"),
        ("amount_in", 0, "INVALID_AMOUNT_IN"),
        ("min_out", 0, "INVALID_MIN_AMOUNT_OUT"),
        ("limit_price", 0, "INVALID_LIMIT_PRICE"),
        ("side", 2, "INVALID_ORDER_TYPE"),
    ])
    def test_validation(self, funded_dex, manager, field, value, code):
        dex = funded_dex
        args = {
            "token_out": dex.token1, "amount_in": 5, "min_out": 1, "limit_price": HIGH_PRICE, "side": SELL,
        }
        args[field] = dex.token0 if field == "token_out" else value
        with pytest.raises(ValidationError, match=code):
            dex.host.call(
                ALICE, manager, "createLimitOrder", dex.token0, args["token_out"],
                args["amount_in"], args["min_out"], args["limit_price"], args["side"], 0,
            )
        assert dex.host.view(manager, "getOrderCount") == 0
        assert dex.host.pending_messages() == []

    def test_expiry_must_be_in_the_future(self, funded_dex, manager):
        funded_dex.host.advance_periods(1)
        with pytest.raises(ValidationError, match="INVALID_EXPIRY"):
            sell_order(funded_dex, manager, expiry=1000)

    def test_escrow_requires_allowance(self, funded_dex, manager):
        dex = funded_dex
        dex.approve(ALICE, dex.token0, manager, 4)
        with pytest.raises(InvariantViolation, match="INSUFFICIENT_ALLOWANCE"):
            sell_order(dex, manager)
        assert dex.host.view(manager, "getPendingOrdersCount") == 0


# ============================================================================
# Execution
# ============================================================================

class TestExecution:

    def test_sell_waits_for_price(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        check(dex, manager)
        assert not get_order(dex, manager, 1).filled

        move_price(dex, HIGH_PRICE)
        assert dex.state().tick == 6931
        check(dex, manager)

        order = get_order(dex, manager, 1)
        assert order.filled
        assert order.amount_out == 4
        assert dex.balance(dex.token1, ALICE) == USER_FUNDS + 4
        assert dex.balance(dex.token0, manager) == 0
        assert dex.host.view(manager, "getPendingOrdersCount") == 0
        assert f"LimitOrder:Executed:1:{ALICE}:5:4" in dex.host.events_from(manager)
        assert "LimitAutoChecker:Processed:1:Executed:1" in dex.host.events_from(manager)

    def test_buy_fills_when_price_drops(self, funded_dex, manager):
        dex = funded_dex
        dex.host.call(ALICE, manager, "createLimitOrder", dex.token1, dex.token0, 5, 1, LOW_PRICE, BUY, 0)
        check(dex, manager)
        assert not get_order(dex, manager, 1).filled

        move_price(dex, LOW_PRICE)
        assert dex.state().tick == -6932
        assert dex.host.call(BOB, manager, "executeLimitOrder", 1) == 4
        assert dex.balance(dex.token0, ALICE) == USER_FUNDS + 4

    def test_fills_automatically(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        move_price(dex, HIGH_PRICE)

        assert dex.host.advance(1) == 1
        assert get_order(dex, manager, 1).filled
        assert dex.host.pending_messages() == []

    def test_chain_keeps_polling_until_filled(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        dex.host.advance(40)
        assert not get_order(dex, manager, 1).filled
        assert len(dex.host.pending_messages()) == 1
        assert dex.host.view(manager, "getBotExecutionCount") == 41

        move_price(dex, HIGH_PRICE)
        dex.host.advance(1)
        assert get_order(dex, manager, 1).filled
        assert dex.host.pending_messages() == []

    def test_below_minimum_stays_pending(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager, limit_price=LOW_PRICE, min_out=10)
        check(dex, manager)

        assert not get_order(dex, manager, 1).filled
        assert "LimitOrder:BelowMinimum:1:4" in dex.host.events_from(manager)
        assert dex.host.view(manager, "getPendingOrdersCount") == 1

        with pytest.raises(InvariantViolation, match="INSUFFICIENT_OUTPUT_AMOUNT"):
            dex.host.call(BOB, manager, "executeLimitOrder", 1)

    def test_strict_execution_errors(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        with pytest.raises(InvariantViolation, match="PRICE_LIMIT_NOT_MET"):
            dex.host.call(BOB, manager, "executeLimitOrder", 1)
        with pytest.raises(OrderStateError, match="ORDER_NOT_FOUND"):
            dex.host.call(BOB, manager, "executeLimitOrder", 99)

        move_price(dex, HIGH_PRICE)
        dex.host.call(BOB, manager, "executeLimitOrder", 1)
        with pytest.raises(OrderStateError, match="ORDER_ALREADY_FILLED"):
            dex.host.call(BOB, manager, "executeLimitOrder", 1)

    def test_missing_pool_is_skipped(self, funded_dex, manager):
        dex = funded_dex
        other = dex.host.deploy(OWNER, MultiToken, "Gamma", "GAM", 18, USER_FUNDS)
        dex.host.call(ALICE, manager, "createLimitOrder", dex.token0, other, 5, 1, LOW_PRICE, SELL, 0)
        check(dex, manager)

        assert "LimitAutoExecute:Skipped:1:POOL_NOT_FOUND" in dex.host.events_from(manager)
        assert dex.host.view(manager, "getPendingOrdersCount") == 1
        with pytest.raises(PoolNotFoundError, match="POOL_NOT_FOUND"):
            dex.host.call(BOB, manager, "executeLimitOrder", 1)


# ============================================================================
# Expiry and cancellation
# ============================================================================

class TestExpiryAndCancel:

    def test_expired_order_refunded_by_chain(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager, expiry=32_000)
        dex.host.advance_periods(3)

        order = get_order(dex, manager, 1)
        assert order.expired and order.cancelled and not order.filled
        assert dex.balance(dex.token0, ALICE) == USER_FUNDS
        assert f"LimitOrder:Expired:1:{ALICE}" in dex.host.events_from(manager)
        assert dex.host.view(manager, "getPendingOrdersCount") == 0
        assert dex.host.pending_messages() == []

    def test_strict_execution_after_outage(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager, expiry=32_000)
        dex.host.warp(Slot(3, 0))
        with pytest.raises(OrderStateError, match="ORDER_EXPIRED"):
            dex.host.call(BOB, manager, "executeLimitOrder", 1)
        assert dex.host.view(manager, "getPendingOrdersCount") == 1

    def test_cancel_refunds(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        with pytest.raises(NotOwnerError, match="NOT_ORDER_OWNER"):
            dex.host.call(BOB, manager, "cancelLimitOrder", 1)

        dex.host.call(ALICE, manager, "cancelLimitOrder", 1)
        assert dex.balance(dex.token0, ALICE) == USER_FUNDS
        assert get_order(dex, manager, 1).cancelled
        assert dex.host.view(manager, "getPendingOrdersCount") == 0

        with pytest.raises(OrderStateError, match="ORDER_ALREADY_CANCELLED"):
            dex.host.call(ALICE, manager, "cancelLimitOrder", 1)

    def test_cancel_filled(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        move_price(dex, HIGH_PRICE)
        check(dex, manager)
        with pytest.raises(OrderStateError, match="ORDER_ALREADY_FILLED"):
            dex.host.call(ALICE, manager, "cancelLimitOrder", 1)

    def test_chain_stops_when_nothing_left(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        dex.host.call(ALICE, manager, "cancelLimitOrder", 1)
        dex.host.advance(1)
        assert "LimitAutoChecker:NoActiveOrders" in dex.host.events_from(manager)
        assert dex.host.pending_messages() == []


# ============================================================================
# Wake chain
# ============================================================================

class TestWakeChain:

    def test_stale_wake_is_ignored(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        check(dex, manager)
        assert len(dex.host.pending_messages()) == 2

        assert dex.host.advance(1) == 2
        assert dex.host.view(manager, "getBotExecutionCount") == 3
        [wake] = dex.host.pending_messages()
        assert wake.payload == (3,)

    def test_owner_stops_and_restarts(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        with pytest.raises(NotOwnerError, match="NOT_OWNER"):
            dex.host.call(ALICE, manager, "stopAutomation")

        dex.host.call(OWNER, manager, "stopAutomation")
        dex.host.advance(1)
        assert dex.host.pending_messages() == []
        assert dex.host.view(manager, "getBotExecutionCount") == 1

        with pytest.raises(NotOwnerError):
            dex.host.call(ALICE, manager, "startAutomation")
        dex.host.call(OWNER, manager, "startAutomation")
        [wake] = dex.host.pending_messages()
        assert wake.validity_start == Slot(0, 2)
        assert dex.host.view(manager, "getBotExecutionCount") == 2

    def test_wrap_waits_for_check_interval(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        dex.host.run_until(Slot(0, 31))
        [wake] = dex.host.pending_messages()
        assert wake.validity_start == Slot(1, 0)
        assert wake.validity_end == Slot(11, 0)


class TestCappedScan:

    @pytest.fixture
    def host(self):
        config = EngineConfig()
        config.limit.max_per_check = 2
        return Host(config)

    def test_round_robin_window(self, funded_dex, manager):
        dex = funded_dex
        for _ in range(3):
            sell_order(dex, manager)
        check(dex, manager)
        check(dex, manager)
        summaries = dex.host.events_from(manager, "LimitAutoChecker:")
        assert summaries == ["LimitAutoChecker:Processed:2:Executed:0"] * 2

        move_price(dex, HIGH_PRICE)
        check(dex, manager)
        check(dex, manager)
        assert dex.host.view(manager, "getPendingOrdersCount") == 0
        assert all(get_order(dex, manager, i).filled for i in (1, 2, 3))


# ============================================================================
# Views
# ============================================================================

class TestViews:

    def test_user_and_pair_queries(self, funded_dex, manager):
        dex = funded_dex
        sell_order(dex, manager)
        dex.host.call(BOB, manager, "createLimitOrder", dex.token1, dex.token0, 7, 1, LOW_PRICE, BUY, 0)

        assert [o.id for o in dex.host.view(manager, "getUserOrders", ALICE)] == [1]
        assert [o.id for o in dex.host.view(manager, "getUserOrders", BOB)] == [2]
        assert [o.id for o in dex.host.view(manager, "getOrdersByTokenPair", dex.token1, dex.token0)] == [2]
        assert dex.host.view(manager, "getOrdersByTokenPair", dex.token0, dex.token1, 0) == []
        assert dex.balance(dex.token1, manager) == 7
        assert dex.host.view(dex.token1, "balanceOf", BOB, TOKEN_ID) == USER_FUNDS - 7
