"""Self-scheduling order managers that trade against the AMM."""

from .active_set import ActiveSet
from .grid import BUY_PENDING, IDLE, SELL_PENDING, GridLevel, GridOrder, GridOrderManager
from .limit import BUY, SELL, LimitOrder, LimitOrderManager
from .recurring import RecurringOrder, RecurringOrderManager

__all__ = [
    "ActiveSet",
    "BUY",
    "BUY_PENDING",
    "GridLevel",
    "GridOrder",
    "GridOrderManager",
    "IDLE",
    "LimitOrder",
    "LimitOrderManager",
    "RecurringOrder",
    "RecurringOrderManager",
    "SELL",
    "SELL_PENDING",
]
