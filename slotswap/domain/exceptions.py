"""
Domain-specific exception hierarchy for the slot swap application.

Every failure of a store or negotiator operation is one of these types. The
boundary layer (CLI) decides how each one is shown to the user.
"""


class SlotSwapError(Exception):
    """Base class for all application-level errors."""


class ValidationError(SlotSwapError):
    """Raised for malformed input: bad time range, empty title, self-swap."""


class NotFoundError(SlotSwapError):
    """Raised when a referenced slot or swap request does not exist."""


class ForbiddenError(SlotSwapError):
    """Raised when the caller does not own the record it tries to act on."""


class ConflictError(SlotSwapError):
    """
    Raised when an operation violates the slot or request state machine.

    Also used for write collisions reported by the storage layer.
    """


class AuthenticationError(SlotSwapError):
    """Raised when a caller identity cannot be resolved."""
