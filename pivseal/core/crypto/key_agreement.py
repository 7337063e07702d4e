"""
Key Agreement Schemes
=====================

Derives the AES key that seals an envelope, and the recovery metadata needed
to re-derive it with the paired private key.

Schemes:
    ECScheme:  ephemeral ECDH against the device key
               metadata = {"epk": <uncompressed ephemeral public point>}
    RSAScheme: random 32-byte secret wrapped with RSA PKCS#1 v1.5
               metadata = {"eck": <wrapped secret>}

No KDF is applied: the agreed (or unwrapped) value is the AES key. Agreed
values longer than 32 bytes (P-384, P-521) are cut to their first 32 bytes.

WARNING:
    - Secrets are returned as bytearrays; callers must zero them after use
    - Private keys stay behind the Decrypter interface (on the token)
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import ClassVar, Final, Protocol, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from pivseal.core.crypto.encoding import b64decode, b64encode
from pivseal.core.crypto.fingerprint import curve_name, fingerprint_ec, fingerprint_rsa
from pivseal.core.errors import MalformedEnvelopeError, UnsupportedKeyError

SECRET_SIZE: Final[int] = 32

PublicKey = Union[ec.EllipticCurvePublicKey, rsa.RSAPublicKey]


class Decrypter(Protocol):
    """Private-key operations needed to recover a shared secret."""

    def public_key(self) -> PublicKey:
        ...

    def exchange(self, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        """ECDH between the held private key and a peer public key."""
        ...

    def decrypt(self, ciphertext: bytes) -> bytes:
        """RSA PKCS#1 v1.5 decryption with the held private key."""
        ...


class LocalDecrypter:
    """
    Decrypter over a software private key.

    Useful for tests and for keys that were never moved onto a token.
    """

    __slots__ = ("_private_key",)

    def __init__(self, private_key: ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey) -> None:
        self._private_key = private_key

    def public_key(self) -> PublicKey:
        return self._private_key.public_key()

    def exchange(self, peer_public_key: ec.EllipticCurvePublicKey) -> bytes:
        if not isinstance(self._private_key, ec.EllipticCurvePrivateKey):
            raise UnsupportedKeyError("ECDH requires an EC private key")
        return self._private_key.exchange(ec.ECDH(), peer_public_key)

    def decrypt(self, ciphertext: bytes) -> bytes:
        if not isinstance(self._private_key, rsa.RSAPrivateKey):
            raise UnsupportedKeyError("RSA decryption requires an RSA private key")
        return self._private_key.decrypt(ciphertext, padding.PKCS1v15())

    def __repr__(self) -> str:
        return f"LocalDecrypter({type(self._private_key).__name__})"


# ---------------------------------------------------------------------------
# Recovery metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ECMetadata:
    """Ephemeral public key needed to re-derive an ECDH secret."""

    TAG: ClassVar[str] = "epk"

    ephemeral_key: bytes

    def to_dict(self) -> dict[str, str]:
        return {self.TAG: b64encode(self.ephemeral_key)}

    def __repr__(self) -> str:
        return f"ECMetadata(epk_len={len(self.ephemeral_key)})"


@dataclass(frozen=True, slots=True)
class RSAMetadata:
    """Wrapped symmetric secret."""

    TAG: ClassVar[str] = "eck"

    cipher_key: bytes

    def to_dict(self) -> dict[str, str]:
        return {self.TAG: b64encode(self.cipher_key)}

    def __repr__(self) -> str:
        return f"RSAMetadata(eck_len={len(self.cipher_key)})"


Metadata = Union[ECMetadata, RSAMetadata]

_METADATA_TYPES: Final[tuple[type, ...]] = (ECMetadata, RSAMetadata)


def metadata_from_dict(data: object) -> Metadata:
    """
    Parse scheme-tagged metadata.

    Raises:
        MalformedEnvelopeError: If the shape or scheme tag is not recognized
    """
    if not isinstance(data, dict):
        raise MalformedEnvelopeError("meta must be an object")

    for cls in _METADATA_TYPES:
        if set(data) == {cls.TAG}:
            return cls(b64decode(data[cls.TAG], field=f"meta.{cls.TAG}"))

    raise MalformedEnvelopeError(f"Unrecognized envelope scheme: {sorted(data)}")


# ---------------------------------------------------------------------------
# Schemes
# ---------------------------------------------------------------------------

class KeyScheme:
    """Shared contract for the key-family variants."""

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""

    def fingerprint(self, public_key: PublicKey) -> str:
        raise NotImplementedError

    def derive(self, public_key: PublicKey) -> tuple[bytearray, Metadata]:
        """Create a fresh shared secret for the public key, plus recovery metadata."""
        raise NotImplementedError

    def recover(self, metadata: Metadata, decrypter: Decrypter) -> bytearray:
        """Re-derive the shared secret with the paired private key."""
        raise NotImplementedError


class ECScheme(KeyScheme):
    """Ephemeral-static ECDH, raw agreed value as the AES key."""

    name = "EC"
    description = "ECDH/AES"

    def fingerprint(self, public_key: ec.EllipticCurvePublicKey) -> str:
        return fingerprint_ec(public_key)

    def derive(self, public_key: ec.EllipticCurvePublicKey) -> tuple[bytearray, ECMetadata]:
        curve_name(public_key.curve)

        # Generate an ephemeral private key using the same curve as the device key
        ephemeral = ec.generate_private_key(public_key.curve)
        encoded = ephemeral.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )

        secret = _agreed_secret(ephemeral.exchange(ec.ECDH(), public_key))
        return secret, ECMetadata(ephemeral_key=encoded)

    def recover(self, metadata: Metadata, decrypter: Decrypter) -> bytearray:
        if not isinstance(metadata, ECMetadata):
            raise MalformedEnvelopeError("Envelope metadata does not match an EC key")

        device_key = decrypter.public_key()
        try:
            peer = ec.EllipticCurvePublicKey.from_encoded_point(
                device_key.curve, metadata.ephemeral_key
            )
        except ValueError as e:
            raise MalformedEnvelopeError(f"Invalid ephemeral public key: {e}") from e

        return _agreed_secret(decrypter.exchange(peer))


class RSAScheme(KeyScheme):
    """Random secret wrapped with RSA PKCS#1 v1.5."""

    name = "RSA"
    description = "RSA+PKCS1v15/AES"

    def fingerprint(self, public_key: rsa.RSAPublicKey) -> str:
        return fingerprint_rsa(public_key)

    def derive(self, public_key: rsa.RSAPublicKey) -> tuple[bytearray, RSAMetadata]:
        secret = bytearray(secrets.token_bytes(SECRET_SIZE))
        wrapped = public_key.encrypt(bytes(secret), padding.PKCS1v15())
        return secret, RSAMetadata(cipher_key=wrapped)

    def recover(self, metadata: Metadata, decrypter: Decrypter) -> bytearray:
        if not isinstance(metadata, RSAMetadata):
            raise MalformedEnvelopeError("Envelope metadata does not match an RSA key")

        # A bad unwrap is replaced by a random key so the failure only shows up
        # as an authentication failure of the payload
        try:
            secret = decrypter.decrypt(metadata.cipher_key)
        except ValueError:
            secret = b""

        if len(secret) != SECRET_SIZE:
            return bytearray(secrets.token_bytes(SECRET_SIZE))
        return bytearray(secret)


EC_SCHEME: Final[ECScheme] = ECScheme()
RSA_SCHEME: Final[RSAScheme] = RSAScheme()


def scheme_for_key(public_key: object) -> KeyScheme:
    """
    Select the key-agreement variant for a public key.

    Raises:
        UnsupportedKeyError: For other key families
    """
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return EC_SCHEME
    if isinstance(public_key, rsa.RSAPublicKey):
        return RSA_SCHEME
    raise UnsupportedKeyError(f"Unsupported public key type: {type(public_key).__name__}")


def _agreed_secret(agreed: bytes) -> bytearray:
    if len(agreed) < SECRET_SIZE:
        raise UnsupportedKeyError(f"Agreed secret too short: {len(agreed)} bytes")
    return bytearray(agreed[:SECRET_SIZE])


def fingerprint_key(public_key: object) -> str:
    """Fingerprint any supported public key."""
    return scheme_for_key(public_key).fingerprint(public_key)
