"""
Test suite for the contract host

Covers:
  - journaled ledger: savepoints, rollback, commit, detached reads
  - namespaced contract storage
  - deployment, entry-point dispatch and read-only views
  - all-or-nothing calls and nested rollback
  - native coins
  - slot clock and scheduled messages (delivery, expiry, failures)
  - reentrancy guard and single-owner access control
"""

import logging

import pytest

from ledgerdex.config import EngineConfig, HostConfig
from ledgerdex.exceptions import (
    ContractNotFoundError,
    DexError,
    EntryPointError,
    InsufficientBalanceError,
    NotOwnerError,
    ReentrancyError,
    ValidationError,
)
from ledgerdex.host import (
    Contract,
    Host,
    Ledger,
    ReentrancyGuard,
    Slot,
    Storage,
    WakeRequest,
    entry_point,
    only_owner,
    owner_of,
    set_owner,
    view,
)
from ledgerdex.host.runtime import MESSAGE_ESCROW

ALICE = "AU1" + "a" * 40
BOB = "AU1" + "b" * 40


class Counter(Contract):
    """Small contract exercising every host facility."""

    def constructor(self, ctx, start=0):
        set_owner(ctx.storage, ctx.caller)
        ctx.storage.set("value", start)

    @entry_point("increment")
    def increment(self, ctx, by=1):
        value = ctx.storage.increment("value", by)
        ctx.emit(f"Incremented:{value}")
        return value

    @entry_point("fail")
    def fail(self, ctx):
        ctx.storage.set("value", 999)
        ctx.emit("Doomed")
        raise ValidationError("BOOM")

    @entry_point("crash")
    def crash(self, ctx):
        ctx.storage.set("value", 999)
        raise RuntimeError("unexpected")

    @entry_point("callOther")
    def call_other(self, ctx, other, method):
        calls = ctx.storage.increment("calls")
        try:
            ctx.call(other, method)
        except DexError:
            ctx.emit("InnerFailed")
        return calls

    @entry_point("schedule")
    def schedule(self, ctx, period, thread, function="increment", validity=2, coins=0, payload=(10,)):
        ctx.send_message(
            WakeRequest(
                target=ctx.callee,
                function=function,
                validity_start=Slot(period, thread),
                validity_end=Slot(period + validity, thread),
                max_gas=1_000_000,
                coins=coins,
                payload=payload,
            )
        )

    @entry_point("payOut")
    def pay_out(self, ctx, to, amount):
        ctx.transfer_coins(to, amount)

    @entry_point("guarded")
    def guarded(self, ctx, reenter=False):
        with ReentrancyGuard(ctx.storage):
            if reenter:
                ctx.call(ctx.callee, "guarded")
            return ctx.storage.increment("guarded")

    @entry_point("reset")
    def reset(self, ctx):
        only_owner(ctx)
        ctx.storage.set("value", 0)

    @view("value")
    def value(self, ctx):
        return ctx.storage.get_int("value")

    @view("sneakyWrite")
    def sneaky_write(self, ctx):
        ctx.storage.set("value", 42)
        ctx.emit("Sneaky")
        return 42

    @view("owner")
    def owner(self, ctx):
        return owner_of(ctx.storage)


@pytest.fixture
def counter(host):
    return host.deploy(ALICE, Counter, 5)


# ============================================================================
# Ledger and storage
# ============================================================================

class TestLedger:

    def test_rollback_restores_and_removes(self):
        ledger = Ledger()
        ledger.set("a", 1)
        ledger.commit()

        marker = ledger.savepoint()
        ledger.set("a", 2)
        ledger.set("b", 3)
        ledger.delete("a")
        ledger.rollback(marker)

        assert ledger.get("a") == 1
        assert "b" not in ledger
        assert len(ledger) == 1

    def test_nested_savepoints(self):
        ledger = Ledger()
        outer = ledger.savepoint()
        ledger.set("x", 1)
        inner = ledger.savepoint()
        ledger.set("x", 2)
        ledger.rollback(inner)
        assert ledger.get("x") == 1
        ledger.rollback(outer)
        assert ledger.get("x") is None

    def test_commit_forgets_journal(self):
        ledger = Ledger()
        ledger.set("x", 1)
        assert ledger.dirty
        ledger.commit()
        assert not ledger.dirty
        ledger.rollback(0)
        assert ledger.get("x") == 1

    def test_reads_are_detached(self):
        ledger = Ledger()
        ledger.set("d", {"n": [1]})
        ledger.get("d")["n"].append(2)
        assert ledger.get("d") == {"n": [1]}

    def test_keys_sorted_by_prefix(self):
        ledger = Ledger()
        for key in ("p/2", "q/1", "p/1"):
            ledger.set(key, 0)
        assert list(ledger.keys("p/")) == ["p/1", "p/2"]

    def test_state_root_tracks_content(self):
        a, b = Ledger(), Ledger()
        a.set("k", 1)
        b.set("k", 1)
        assert a.state_root() == b.state_root()
        b.set("k", 2)
        assert a.state_root() != b.state_root()


class TestStorage:

    def test_namespaces_are_isolated(self):
        ledger = Ledger()
        first, second = Storage(ledger, "AS1one"), Storage(ledger, "AS1two")
        first.set("count", 1)
        assert second.get("count") is None
        assert not second.has("count")
        assert ledger.get("AS1one/count") == 1

    def test_increment_and_keys(self):
        storage = Storage(Ledger(), "AS1one")
        assert storage.increment("n") == 1
        assert storage.increment("n", 4) == 5
        storage.set("tick:-60", {})
        storage.set("tick:60", {})
        assert storage.keys("tick:") == ["tick:-60", "tick:60"]

    def test_delete(self):
        storage = Storage(Ledger(), "AS1one")
        storage.set("k", 1)
        storage.delete("k")
        storage.delete("missing")
        assert storage.get_int("k") == 0


# ============================================================================
# Dispatch and transactions
# ============================================================================

class TestDispatch:

    def test_deploy_runs_constructor(self, host, counter):
        assert counter.startswith("AS1")
        assert host.is_contract(counter)
        assert host.view(counter, "value") == 5
        assert host.view(counter, "owner") == ALICE

    def test_addresses_are_unique(self, host, counter):
        other = host.deploy(ALICE, Counter)
        assert other != counter

    def test_call_commits_and_emits(self, host, counter):
        assert host.call(BOB, counter, "increment", 3) == 8
        assert host.view(counter, "value") == 8
        event = host.events[-1]
        assert (event.slot, event.emitter, event.data) == (Slot(0, 0), counter, "Incremented:8")
        assert not host.ledger.dirty

    def test_failed_call_reverts_everything(self, host, counter):
        events_before = len(host.events)
        with pytest.raises(ValidationError, match="BOOM"):
            host.call(BOB, counter, "fail")
        assert host.view(counter, "value") == 5
        assert len(host.events) == events_before

    def test_nested_failure_only_reverts_inner_call(self, host, counter):
        other = host.deploy(ALICE, Counter)
        assert host.call(BOB, counter, "callOther", other, "fail") == 1
        assert host.view(other, "value") == 0
        assert host.events_from(counter) == ["InnerFailed"]
        assert host.events_from(other) == []

    def test_unknown_entry_point(self, host, counter):
        with pytest.raises(EntryPointError, match="UNKNOWN_ENTRY_POINT"):
            host.call(BOB, counter, "doesNotExist")

    def test_unknown_contract(self, host):
        with pytest.raises(ContractNotFoundError, match="CONTRACT_NOT_FOUND"):
            host.call(BOB, "AS1nowhere", "increment")

    def test_view_refuses_mutators(self, host, counter):
        with pytest.raises(EntryPointError, match="NOT_A_VIEW"):
            host.view(counter, "increment")

    def test_view_discards_writes(self, host, counter):
        assert host.view(counter, "sneakyWrite") == 42
        assert host.view(counter, "value") == 5
        assert "Sneaky" not in host.events_from(counter)

    def test_entry_point_table_is_inherited(self):
        class Extended(Counter):
            @view("double")
            def double(self, ctx):
                return 2 * ctx.storage.get_int("value")

        points = Extended.entry_points()
        assert points["increment"] == ("increment", False)
        assert points["double"] == ("double", True)
        assert "double" not in Counter.entry_points()


# ============================================================================
# Native coins
# ============================================================================

class TestCoins:

    def test_coins_follow_calls(self, host, counter):
        host.mint_coins(BOB, 1000)
        host.call(BOB, counter, "increment", coins=300)
        assert host.coin_balance(BOB) == 700
        assert host.coin_balance(counter) == 300

        host.call(BOB, counter, "payOut", ALICE, 100)
        assert host.coin_balance(ALICE) == 100
        assert host.coin_balance(counter) == 200

    def test_insufficient_coins_revert(self, host, counter):
        host.mint_coins(BOB, 10)
        with pytest.raises(InsufficientBalanceError, match="INSUFFICIENT_COINS"):
            host.call(BOB, counter, "increment", coins=11)
        assert host.coin_balance(BOB) == 10
        assert host.view(counter, "value") == 5

    def test_mint_rejects_zero(self, host):
        with pytest.raises(ValidationError, match="ZERO_AMOUNT"):
            host.mint_coins(BOB, 0)


# ============================================================================
# Clock and scheduled messages
# ============================================================================

class TestClock:

    def test_slot_ordering_and_wrap(self):
        assert Slot(0, 31) < Slot(1, 0)
        assert Slot(0, 31).next(32) == Slot(1, 0)
        assert Slot(2, 3).next(32) == Slot(2, 4)
        assert str(Slot(4, 7)) == "(4:7)"

    def test_advance_and_timestamp(self, host):
        host.advance(33)
        assert host.slot == Slot(1, 1)
        assert host.timestamp == 16_000 + 500

    def test_custom_thread_count(self):
        host = Host(EngineConfig(host=HostConfig(threads_per_period=4)))
        host.advance_periods(2)
        assert host.slot == Slot(2, 0)
        assert host.timestamp == 32_000

    def test_warp_only_moves_forward(self, host):
        host.warp(Slot(3, 0))
        assert host.slot == Slot(3, 0)
        with pytest.raises(ValidationError, match="INVALID_WARP"):
            host.warp(Slot(2, 0))


class TestScheduledMessages:

    def test_delivered_at_start_slot(self, host, counter):
        host.call(BOB, counter, "schedule", 2, 5)
        assert len(host.pending_messages()) == 1

        host.run_until(Slot(2, 4))
        assert host.view(counter, "value") == 5

        assert host.advance(1) == 1
        assert host.view(counter, "value") == 15
        assert host.pending_messages() == []

    def test_runs_as_sender(self, host, counter):
        host.call(BOB, counter, "schedule", 0, 1)
        host.advance(1)
        event = host.events[-1]
        assert event.emitter == counter
        assert event.data == "Incremented:15"

    def test_wake_must_be_in_the_future(self, host, counter):
        with pytest.raises(ValidationError, match="INVALID_WAKE_SLOT"):
            host.call(BOB, counter, "schedule", 0, 0)

    def test_window_must_not_be_inverted(self, host, counter):
        with pytest.raises(ValidationError, match="INVALID_WAKE_WINDOW"):
            host.call(BOB, counter, "schedule", 1, 0, "increment", -1)

    def test_failure_is_logged_not_raised(self, host, counter, caplog):
        host.call(BOB, counter, "schedule", 0, 1, "fail", 2, 0, ())
        with caplog.at_level(logging.WARNING, logger="ledgerdex.host.runtime"):
            assert host.advance(1) == 0
        assert host.view(counter, "value") == 5
        assert host.pending_messages() == []
        assert "BOOM" in caplog.text

    def test_unexpected_error_does_not_stop_delivery(self, host, counter, caplog):
        host.call(BOB, counter, "schedule", 0, 1, "crash", 2, 0, ())
        host.call(BOB, counter, "schedule", 0, 1, "increment", 2, 0, (1,))
        with caplog.at_level(logging.ERROR, logger="ledgerdex.host.runtime"):
            assert host.advance(1) == 1
        assert host.view(counter, "value") == 6
        assert host.pending_messages() == []
        assert "crashed" in caplog.text
        assert "RuntimeError" in caplog.text

    def test_expired_message_is_dropped_and_refunded(self, host, counter):
        host.mint_coins(counter, 50)
        host.call(BOB, counter, "schedule", 1, 0, "increment", 1, 50)
        assert host.coin_balance(counter) == 0
        assert host.coin_balance(MESSAGE_ESCROW) == 50

        host.warp(Slot(5, 0))
        assert host.advance(1) == 0
        assert host.pending_messages() == []
        assert host.view(counter, "value") == 5
        assert host.coin_balance(counter) == 50

    def test_coins_delivered_with_message(self, host, counter):
        host.mint_coins(counter, 50)
        host.call(BOB, counter, "schedule", 0, 1, "increment", 2, 50)
        host.advance(1)
        assert host.coin_balance(counter) == 50
        assert host.coin_balance(MESSAGE_ESCROW) == 0

    def test_due_messages_run_in_start_order(self, host, counter):
        host.call(BOB, counter, "schedule", 0, 3, "increment", 2, 0, (1,))
        host.call(BOB, counter, "schedule", 0, 2, "increment", 2, 0, (100,))
        host.warp(Slot(0, 3))
        host.advance(1)
        assert host.events_from(counter, "Incremented") == ["Incremented:105", "Incremented:106"]


# ============================================================================
# Guard and ownership
# ============================================================================

class TestGuardAndOwnership:

    def test_reentrant_call_rejected(self, host, counter):
        with pytest.raises(ReentrancyError, match="REENTRANT_CALL"):
            host.call(BOB, counter, "guarded", True)

    def test_guard_released_after_success_and_failure(self, host, counter):
        with pytest.raises(ReentrancyError):
            host.call(BOB, counter, "guarded", True)
        assert host.call(BOB, counter, "guarded") == 1
        assert host.call(BOB, counter, "guarded") == 2

    def test_only_owner(self, host, counter):
        with pytest.raises(NotOwnerError, match="NOT_OWNER"):
            host.call(BOB, counter, "reset")
        host.call(ALICE, counter, "reset")
        assert host.view(counter, "value") == 0
