"""
Memory Zeroization Utilities
============================

Best-effort wiping of shared secrets once the symmetric step completes.

Key Concepts:
- Zeroization: Overwriting a mutable buffer with zeros
- Guard: Automatic cleanup on scope exit

WARNING:
- Python's memory model doesn't guarantee secure erasure
- The AEAD implementation may hold its own copy of the key
"""

from __future__ import annotations

import ctypes
from contextlib import contextmanager
from typing import Iterator


def secure_zero(data: bytearray | memoryview) -> None:
    """
    Zero a mutable byte buffer in place.

    Uses ctypes for direct memory access where possible,
    with fallback to Python-level zeroing.

    Args:
        data: Mutable byte buffer to zero

    Security Notes:
        - This is best-effort; Python may have copies
        - Buffer must be mutable (bytearray, not bytes)
    """
    if len(data) == 0:
        return

    if isinstance(data, memoryview):
        for i in range(len(data)):
            data[i] = 0
        return

    addr = ctypes.addressof((ctypes.c_char * len(data)).from_buffer(data))
    ctypes.memset(addr, 0, len(data))


@contextmanager
def ZeroizeContext(*buffers: bytearray) -> Iterator[None]:
    """
    Context manager that zeroizes buffers on exit.

    Always zeroizes, whether exit is normal or exceptional.

    Usage:
        secret = bytearray(scheme_secret)

        with ZeroizeContext(secret):
            cipher.encrypt(payload, secret)
        # secret is now zeroed
    """
    try:
        yield
    finally:
        for buf in buffers:
            secure_zero(buf)
