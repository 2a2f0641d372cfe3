"""
Execution host: ledger, call dispatch, coins, events and scheduled messages.
"""

from .guard import ReentrancyGuard
from .ledger import Ledger, Storage
from .ownership import only_owner, owner_of, set_owner
from .runtime import (
    CallContext,
    Contract,
    Event,
    Host,
    Slot,
    WakeRequest,
    entry_point,
    view,
)

__all__ = [
    "CallContext",
    "Contract",
    "Event",
    "Host",
    "Ledger",
    "ReentrancyGuard",
    "Slot",
    "Storage",
    "WakeRequest",
    "entry_point",
    "only_owner",
    "owner_of",
    "set_owner",
    "view",
]
