"""
Domain layer - Pure business logic without external dependencies.
"""

from .exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SlotSwapError,
    ValidationError,
)
from .models import (
    Party,
    Slot,
    SlotPatch,
    SlotStatus,
    SwapRequest,
    SwapRequestView,
    SwapStatus,
    TimeRange,
)

__all__ = [
    "AuthenticationError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "SlotSwapError",
    "ValidationError",
    "Party",
    "Slot",
    "SlotPatch",
    "SlotStatus",
    "SwapRequest",
    "SwapRequestView",
    "SwapStatus",
    "TimeRange",
]
