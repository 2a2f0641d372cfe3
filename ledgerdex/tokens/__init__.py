"""Token collaborators used by pools and order managers."""

from .multi_token import MAX_ALLOWANCE, MultiToken

__all__ = ["MAX_ALLOWANCE", "MultiToken"]
