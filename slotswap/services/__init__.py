"""
Service layer: slot store and swap negotiator over an injected storage.
"""

from .slot_store import SlotStore
from .storage import (
    SlotRepository,
    Storage,
    SwapRequestRepository,
    Transaction,
    TransactionalStorage,
)
from .swap_negotiator import SwapNegotiator, UserDirectoryProtocol

__all__ = [
    "SlotStore",
    "SwapNegotiator",
    "UserDirectoryProtocol",
    "SlotRepository",
    "Storage",
    "SwapRequestRepository",
    "Transaction",
    "TransactionalStorage",
]
