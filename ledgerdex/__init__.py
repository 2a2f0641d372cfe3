"""
ledgerdex Package

Concentrated-liquidity exchange with self-scheduling limit, recurring and
grid order managers, running on a deterministic ledger host.

Core imports are lazily loaded. For direct module access, import from
submodules:

    from ledgerdex.host import Host
    from ledgerdex.amm import Factory, Pool
    from ledgerdex.orders import LimitOrderManager
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading so that importing the package stays cheap."""
    if name == 'Host':
        from .host import Host
        return Host
    elif name == 'Factory':
        from .amm import Factory
        return Factory
    elif name == 'MultiToken':
        from .tokens import MultiToken
        return MultiToken
    elif name == 'DexError':
        from .exceptions import DexError
        return DexError
    raise AttributeError(f"module 'ledgerdex' has no attribute {name!r}")


__all__ = ['Host', 'Factory', 'MultiToken', 'DexError']
