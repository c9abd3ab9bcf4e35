"""
Gift code inventory engine.

Stores prepaid redemption codes encrypted at rest, allocates them against a
target amount, and tracks each code from AVAILABLE to REDEEMED or EXPIRED.
"""

__version__ = "1.0.0"
