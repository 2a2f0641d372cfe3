"""
Multi-token ledger.

Balances are keyed by (token id, holder). A spender moves someone else's
tokens either through a per-id allowance or as a blanket operator; an
allowance of ``MAX_ALLOWANCE`` is never decremented.
"""

from __future__ import annotations

from ..exceptions import InsufficientAllowanceError, InsufficientBalanceError, ValidationError
from ..host.ownership import only_owner, owner_of, set_owner
from ..host.runtime import CallContext, Contract, entry_point, view

MAX_ALLOWANCE = (1 << 256) - 1

NAME = "NAME"
SYMBOL = "SYMBOL"
DECIMALS = "DECIMALS"


def balance_key(token_id: int, holder: str) -> str:
    return f"BALANCE:{token_id}:{holder}"


def allowance_key(owner: str, spender: str, token_id: int) -> str:
    return f"ALLOWANCE:{owner}:{spender}:{token_id}"


def operator_key(owner: str, operator: str) -> str:
    return f"OPERATOR:{owner}:{operator}"


def supply_key(token_id: int) -> str:
    return f"TOTAL_SUPPLY:{token_id}"


class MultiToken(Contract):
    """Fungible multi-id token; the exchange only ever uses id 0."""

    def constructor(self, ctx: CallContext, name: str, symbol: str, decimals: int, initial_supply: int = 0) -> None:
        s = ctx.storage
        set_owner(s, ctx.caller)
        s.set(NAME, name)
        s.set(SYMBOL, symbol)
        s.set(DECIMALS, decimals)
        if initial_supply:
            self._mint(ctx, ctx.caller, 0, initial_supply)

    # -- Internals -----------------------------------------------------

    @staticmethod
    def _mint(ctx: CallContext, to: str, token_id: int, amount: int) -> None:
        if amount <= 0:
            raise ValidationError("ZERO_AMOUNT")
        ctx.storage.increment(balance_key(token_id, to), amount)
        ctx.storage.increment(supply_key(token_id), amount)
        ctx.emit(f"Transfer::{to}:{token_id}:{amount}")

    @staticmethod
    def _transfer(ctx: CallContext, sender: str, to: str, token_id: int, amount: int) -> None:
        s = ctx.storage
        if amount <= 0:
            raise ValidationError("ZERO_AMOUNT")
        if sender == to:
            raise ValidationError("SELF_TRANSFER")
        balance = s.get_int(balance_key(token_id, sender))
        if balance < amount:
            raise InsufficientBalanceError("INSUFFICIENT_BALANCE", f"{sender} holds {balance}, needs {amount}")
        s.set(balance_key(token_id, sender), balance - amount)
        s.increment(balance_key(token_id, to), amount)
        ctx.emit(f"Transfer:{sender}:{to}:{token_id}:{amount}")

    # -- Mutators ------------------------------------------------------

    @entry_point("transfer")
    def transfer(self, ctx: CallContext, to: str, token_id: int, amount: int) -> None:
        self._transfer(ctx, ctx.caller, to, token_id, amount)

    @entry_point("transferFrom")
    def transfer_from(self, ctx: CallContext, sender: str, to: str, token_id: int, amount: int) -> None:
        spender = ctx.caller
        s = ctx.storage
        if spender != sender and not s.get(operator_key(sender, spender), False):
            allowed = s.get_int(allowance_key(sender, spender, token_id))
            if allowed < amount:
                raise InsufficientAllowanceError(
                    "INSUFFICIENT_ALLOWANCE", f"{spender} may move {allowed} of {sender}'s id {token_id}"
                )
            if allowed != MAX_ALLOWANCE:
                s.set(allowance_key(sender, spender, token_id), allowed - amount)
        self._transfer(ctx, sender, to, token_id, amount)

    @entry_point("approve")
    def approve(self, ctx: CallContext, spender: str, token_id: int, amount: int) -> None:
        owner = ctx.caller
        if owner == spender:
            raise ValidationError("SELF_APPROVE")
        ctx.storage.set(allowance_key(owner, spender, token_id), amount)
        ctx.emit(f"Approval:{owner}:{spender}:{token_id}:{amount}")

    @entry_point("setOperator")
    def set_operator(self, ctx: CallContext, operator: str, approved: bool) -> None:
        owner = ctx.caller
        if owner == operator:
            raise ValidationError("SELF_OPERATOR")
        ctx.storage.set(operator_key(owner, operator), bool(approved))
        ctx.emit(f"SetOperator:{owner}:{operator}:{str(bool(approved)).lower()}")

    @entry_point("mint")
    def mint(self, ctx: CallContext, to: str, token_id: int, amount: int) -> None:
        only_owner(ctx)
        self._mint(ctx, to, token_id, amount)

    # -- Views ---------------------------------------------------------

    @view("balanceOf")
    def balance_of(self, ctx: CallContext, owner: str, token_id: int) -> int:
        return ctx.storage.get_int(balance_key(token_id, owner))

    @view("allowance")
    def allowance(self, ctx: CallContext, owner: str, spender: str, token_id: int) -> int:
        return ctx.storage.get_int(allowance_key(owner, spender, token_id))

    @view("isOperator")
    def is_operator(self, ctx: CallContext, owner: str, operator: str) -> bool:
        return bool(ctx.storage.get(operator_key(owner, operator), False))

    @view("totalSupply")
    def total_supply(self, ctx: CallContext, token_id: int) -> int:
        return ctx.storage.get_int(supply_key(token_id))

    @view("name")
    def name(self, ctx: CallContext) -> str:
        return ctx.storage.get(NAME)

    @view("symbol")
    def symbol(self, ctx: CallContext) -> str:
        return ctx.storage.get(SYMBOL)

    @view("decimals")
    def decimals(self, ctx: CallContext) -> int:
        return ctx.storage.get_int(DECIMALS)

    @view("getOwner")
    def get_owner(self, ctx: CallContext) -> str:
        return owner_of(ctx.storage)
