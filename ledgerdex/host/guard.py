"""Reentrancy guard persisted in a contract's own storage."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..exceptions import ReentrancyError

if TYPE_CHECKING:
    from .ledger import Storage

STATUS_KEY = "REENTRANCY_STATUS"
NOT_ENTERED = 1
ENTERED = 2


def initialize(storage: "Storage") -> None:
    storage.set(STATUS_KEY, NOT_ENTERED)


class ReentrancyGuard:
    """
    Scoped guard around a mutating entry point.

    Usage:
        with ReentrancyGuard(ctx.storage):
            ...

    The flag lives in the ledger, so a failed call restores it along with
    everything else, and a nested call chain that comes back into the same
    contract sees ENTERED.
    """

    def __init__(self, storage: "Storage"):
        self.storage = storage

    def __enter__(self) -> "ReentrancyGuard":
        if self.storage.get_int(STATUS_KEY, NOT_ENTERED) == ENTERED:
            raise ReentrancyError("REENTRANT_CALL", self.storage.address)
        self.storage.set(STATUS_KEY, ENTERED)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.storage.set(STATUS_KEY, NOT_ENTERED)
        return False
