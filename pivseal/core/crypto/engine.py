"""
Envelope Encryption Engine
==========================

Hybrid encryption of a JSON payload to a single asymmetric key.

Encryption Flow:
    public key
        ↓ KeyScheme.derive → shared secret + recovery metadata
    payload (JSON)
        ↓ AES-256-GCM (shared secret, random nonce)
    Envelope(device, key fingerprint, metadata, nonce, ciphertext)

Decryption Flow:
    Envelope
        ↓ fingerprint(decrypter key) == envelope.key_id   (else KeyMismatchError)
        ↓ KeyScheme.recover → shared secret
        ↓ AES-256-GCM decrypt (verify integrity)
    payload

WARNING:
    - The key check happens before any cryptographic operation
    - Any failure = complete rejection (fail-closed)
    - Shared secrets are zeroed once the symmetric step completes
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pivseal.core.crypto.aes_gcm import AesGcmCipher
from pivseal.core.crypto.envelope import Envelope, dump_json
from pivseal.core.crypto.fingerprint import fingerprints_match
from pivseal.core.crypto.key_agreement import Decrypter, PublicKey, scheme_for_key
from pivseal.core.errors import DecryptionError, KeyMismatchError
from pivseal.core.memory import ZeroizeContext


class EnvelopeEngine:
    """
    Seals payloads to a public key and opens them with the paired private key.

    The engine never touches hardware: the private side is any Decrypter,
    either a PIV slot or a software key.

    Usage:
        engine = EnvelopeEngine(logger)

        envelope = engine.seal({"root_token": "..."}, public_key, device=serial)
        payload = engine.open(envelope, decrypter)
    """

    __slots__ = ("_aes", "_logger")

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._aes = AesGcmCipher()
        self._logger = logger or logging.getLogger(__name__)

    def seal(self, payload: Any, public_key: PublicKey, device: int = 0) -> Envelope:
        """
        Encrypt a JSON-serializable payload to a public key.

        Args:
            payload: Any JSON-serializable value
            public_key: Device public key (EC or RSA)
            device: Serial of the device holding the private key

        Returns:
            Envelope ready for persistence

        Raises:
            UnsupportedKeyError: If the key family or curve is not supported
        """
        return self.seal_bytes(dump_json(payload), public_key, device)

    def seal_bytes(self, plaintext: bytes, public_key: PublicKey, device: int = 0) -> Envelope:
        """Encrypt already-serialized payload bytes to a public key."""
        scheme = scheme_for_key(public_key)
        key_id = scheme.fingerprint(public_key)

        self._logger.info("Encrypting with %s key_id=%s", scheme.description, key_id)
        secret, metadata = scheme.derive(public_key)

        with ZeroizeContext(secret):
            result = self._aes.encrypt(plaintext, secret)

        return Envelope(
            device=device,
            key_id=key_id,
            metadata=metadata,
            nonce=result.nonce,
            ciphertext=result.ciphertext,
        )

    def open(self, envelope: Envelope, decrypter: Decrypter) -> Any:
        """
        Decrypt an envelope and parse its JSON payload.

        Raises:
            KeyMismatchError: If the decrypter's key did not seal this envelope
            DecryptionError: If authentication fails
            MalformedEnvelopeError: If metadata doesn't fit the key family
        """
        plaintext = self.open_bytes(envelope, decrypter)
        try:
            return json.loads(plaintext)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise DecryptionError("Decrypted payload is not valid JSON") from None

    def check_key(self, envelope: Envelope, public_key: PublicKey) -> str:
        """
        Verify that public_key is the key the envelope was sealed to.

        Returns:
            The key fingerprint

        Raises:
            KeyMismatchError: On any difference
        """
        key_id = scheme_for_key(public_key).fingerprint(public_key)
        if not fingerprints_match(envelope.key_id, key_id):
            raise KeyMismatchError(envelope.key_id, key_id)
        return key_id

    def open_bytes(self, envelope: Envelope, decrypter: Decrypter) -> bytes:
        """Decrypt an envelope, returning the raw payload bytes."""
        public_key = decrypter.public_key()
        scheme = scheme_for_key(public_key)
        key_id = self.check_key(envelope, public_key)

        self._logger.info("Decrypting with %s key_id=%s", scheme.description, key_id)
        secret = scheme.recover(envelope.metadata, decrypter)

        with ZeroizeContext(secret):
            return self._aes.decrypt(envelope.ciphertext, envelope.nonce, secret)
