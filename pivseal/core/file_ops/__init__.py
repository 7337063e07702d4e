"""
PivSeal File Operations Module
==============================

Device-bound envelope operations and atomic persistence.

Security Features:
- Plaintext never written to disk
- Envelopes and tokens written atomically with mode 0600
- Fail-closed design

Components:
- envelope_ops.py: encrypt/decrypt/re-encrypt with a PIV device
- atomic.py: atomic file replacement
"""

from pivseal.core.file_ops.atomic import write_atomic
from pivseal.core.file_ops.envelope_ops import decrypt_from_device, encrypt_to_device, reencrypt

__all__ = ["write_atomic", "decrypt_from_device", "encrypt_to_device", "reencrypt"]
