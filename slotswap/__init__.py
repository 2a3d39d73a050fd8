"""
slotswap - publish calendar slots and trade them with other users.
"""

__version__ = "0.1.0"
