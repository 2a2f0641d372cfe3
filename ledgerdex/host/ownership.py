"""Single-owner access control for contracts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..exceptions import NotOwnerError

if TYPE_CHECKING:
    from .ledger import Storage
    from .runtime import CallContext

OWNER_KEY = "OWNER"


def set_owner(storage: "Storage", owner: str) -> None:
    storage.set(OWNER_KEY, owner)


def owner_of(storage: "Storage") -> str:
    return storage.get(OWNER_KEY, "")


def only_owner(ctx: "CallContext") -> None:
    if ctx.caller != owner_of(ctx.storage):
        raise NotOwnerError("NOT_OWNER", ctx.caller)
