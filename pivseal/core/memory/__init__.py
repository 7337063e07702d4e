"""
PivSeal Memory Security Module
==============================

Provides best-effort zeroization of ephemeral key material.

WARNING:
- Python's memory model doesn't guarantee secure erasure
- These are best-effort mitigations
"""

from pivseal.core.memory.zeroization import secure_zero, ZeroizeContext

__all__ = [
    "secure_zero",
    "ZeroizeContext",
]
