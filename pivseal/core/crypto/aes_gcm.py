"""
AES-256-GCM Authenticated Encryption
====================================

Seals envelope payloads under the shared secret produced by key agreement.

Security Properties:
    - 256-bit key (the shared secret, used directly)
    - 96-bit random nonce per seal
    - 128-bit authentication tag appended to the ciphertext
    - No Additional Authenticated Data

WARNING:
    - Never reuse (key, nonce) pairs
    - Tag failures surface as a generic DecryptionError, never partial plaintext
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pivseal.core.errors import DecryptionError

# Constants following NIST recommendations
AES_KEY_SIZE: Final[int] = 32  # 256 bits
AES_NONCE_SIZE: Final[int] = 12  # 96 bits (NIST recommended for GCM)
AES_TAG_SIZE: Final[int] = 16  # 128 bits


@dataclass(frozen=True, slots=True)
class AesGcmResult:
    """
    Immutable result of AES-GCM encryption.

    Attributes:
        ciphertext: Encrypted data with appended authentication tag
        nonce: Nonce used for this encryption (must be stored with ciphertext)
    """

    ciphertext: bytes
    nonce: bytes

    def __repr__(self) -> str:
        return f"AesGcmResult(ciphertext_len={len(self.ciphertext)}, nonce_len={len(self.nonce)})"


class AesGcmCipher:
    """
    AES-256-GCM Authenticated Encryption.

    Usage:
        cipher = AesGcmCipher()

        result = cipher.encrypt(payload, secret)
        payload = cipher.decrypt(result.ciphertext, result.nonce, secret)

    Security Notes:
        - The key is the key-agreement secret; the caller zeroes it afterwards
        - Decryption uses the nonce length found in the envelope
    """

    __slots__ = ()

    @staticmethod
    def generate_nonce() -> bytes:
        """
        Generate a cryptographically secure random nonce.

        Returns:
            12 bytes of cryptographic random data
        """
        return secrets.token_bytes(AES_NONCE_SIZE)

    def encrypt(self, plaintext: bytes, key: bytes | bytearray) -> AesGcmResult:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Data to encrypt (can be empty)
            key: 32-byte shared secret

        Returns:
            AesGcmResult containing ciphertext and nonce

        Raises:
            ValueError: If the key is the wrong size
        """
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be exactly {AES_KEY_SIZE} bytes")

        nonce = self.generate_nonce()
        ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)

        return AesGcmResult(ciphertext=ciphertext, nonce=nonce)

    def decrypt(self, ciphertext: bytes, nonce: bytes, key: bytes | bytearray) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM with integrity verification.

        Args:
            ciphertext: Encrypted data with authentication tag
            nonce: The nonce stored alongside the ciphertext, any length GCM accepts
            key: The 32-byte shared secret

        Returns:
            Decrypted plaintext bytes

        Raises:
            DecryptionError: If authentication fails or the parameters are unusable
        """
        if len(key) != AES_KEY_SIZE:
            raise DecryptionError()
        if len(ciphertext) < AES_TAG_SIZE:
            raise DecryptionError("Decryption failed: ciphertext too short")

        try:
            return AESGCM(bytes(key)).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionError() from None
        except ValueError:
            # Raised for nonce lengths GCM cannot use
            raise DecryptionError() from None
