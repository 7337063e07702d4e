"""
PivSeal - PIV Hardware-Bound Envelope Encryption
================================================

Seals small, highly sensitive JSON secrets (Vault unseal keys, root
tokens) so that only one PIV device can open them, and moves that
protection between devices without writing plaintext to disk.

Security Notice:
- Private keys never leave the PIV device
- No PIN, token or plaintext is logged
- Fail-closed: any key or integrity mismatch aborts the operation
"""

from pivseal.core.config import PivSealConfig
from pivseal.core.logging import get_secure_logger

__version__ = "0.1.0"

__all__ = ["PivSealConfig", "get_secure_logger", "__version__"]
