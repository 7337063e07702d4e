"""
PivSeal Cryptographic Core
==========================

Hybrid envelope encryption to a single EC or RSA public key.

Architecture:
    1. KeyScheme: per key family shared-secret derivation (ECDH / RSA wrap)
    2. AES-256-GCM: authenticated encryption of the JSON payload
    3. Envelope: JSON document with unpadded base64 binary fields

Security Properties:
    - All encryption is authenticated (AEAD)
    - Key identity is checked before any decryption attempt
    - Shared secrets are zeroed after use (best effort)
    - Secure RNG for all random values

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from pivseal.core.crypto.aes_gcm import AesGcmCipher
from pivseal.core.crypto.engine import EnvelopeEngine
from pivseal.core.crypto.envelope import Envelope
from pivseal.core.crypto.fingerprint import fingerprint_ec, fingerprint_rsa, fingerprints_match
from pivseal.core.crypto.key_agreement import (
    EC_SCHEME,
    RSA_SCHEME,
    Decrypter,
    ECMetadata,
    KeyScheme,
    LocalDecrypter,
    RSAMetadata,
    fingerprint_key,
    scheme_for_key,
)

__all__ = [
    "AesGcmCipher",
    "EnvelopeEngine",
    "Envelope",
    "fingerprint_ec",
    "fingerprint_rsa",
    "fingerprints_match",
    "fingerprint_key",
    "EC_SCHEME",
    "RSA_SCHEME",
    "Decrypter",
    "ECMetadata",
    "KeyScheme",
    "LocalDecrypter",
    "RSAMetadata",
    "scheme_for_key",
]
