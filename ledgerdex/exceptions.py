"""
ledgerdex Exceptions

Every failure raised by a contract carries a short machine-readable reason
code. The host reverts the whole call on any of them.
"""

from typing import Optional


class DexError(Exception):
    """Base exception for ledgerdex."""

    def __init__(self, code: str, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)


# -- Validation --------------------------------------------------------

class ValidationError(DexError, ValueError):
    """Malformed arguments, bad ranges or self-referential pairs."""
    pass


# -- Invariant violations ---------------------------------------------

class InvariantViolation(DexError):
    """A well-formed call that the current state does not allow."""
    pass


class InsufficientBalanceError(InvariantViolation):
    pass


class InsufficientAllowanceError(InvariantViolation):
    pass


class InsufficientLiquidityError(InvariantViolation):
    pass


class ReentrancyError(InvariantViolation):
    """A guarded contract was entered again before its mutation finished."""
    pass


class NotOwnerError(InvariantViolation):
    pass


class OrderStateError(InvariantViolation):
    """Order is missing or already terminal."""
    pass


# -- Collaborator failures --------------------------------------------

class CollaboratorError(DexError):
    """A dependency could not serve the request; automation retries next cycle."""
    pass


class PoolNotFoundError(CollaboratorError):
    pass


class ContractNotFoundError(CollaboratorError):
    pass


class EntryPointError(CollaboratorError):
    """Unknown entry point, or a mutator invoked through a read-only view."""
    pass


# -- Configuration -----------------------------------------------------

class ConfigurationError(DexError):
    """Configuration error."""
    pass
