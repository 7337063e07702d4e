"""
Vault API Client
================

Minimal HashiCorp Vault client for initializing, unsealing and logging in
with secrets protected by a PIV device.
"""

from pivseal.vault.client import SealStatus, TokenAuth, VaultClient, VaultError

__all__ = ["SealStatus", "TokenAuth", "VaultClient", "VaultError"]
