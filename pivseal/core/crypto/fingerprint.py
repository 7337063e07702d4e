"""
Public Key Fingerprints
=======================

Deterministic identity strings binding an envelope to the device key that
produced it.

Format:
    EC:<curve-name>:<sha256 hex>    hash(curve name || X || Y)
    RSA:<modulus bits>:<sha256 hex> hash(N || E as 4-byte big-endian)

Integers are hashed as minimal big-endian byte strings.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Final

from cryptography.hazmat.primitives.asymmetric import ec, rsa

from pivseal.core.errors import UnsupportedKeyError

# cryptography curve names -> NIST names used in fingerprints and logs
CURVE_NAMES: Final[dict[str, str]] = {
    ec.SECP256R1.name: "P-256",
    ec.SECP384R1.name: "P-384",
    ec.SECP521R1.name: "P-521",
}


def curve_name(curve: ec.EllipticCurve) -> str:
    """Return the NIST name of a supported curve."""
    try:
        return CURVE_NAMES[curve.name]
    except KeyError:
        raise UnsupportedKeyError(f"Unsupported elliptic curve: {curve.name}") from None


def _int_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def fingerprint_ec(key: ec.EllipticCurvePublicKey) -> str:
    """Fingerprint an EC public key."""
    numbers = key.public_numbers()
    name = curve_name(key.curve)

    hasher = hashlib.sha256()
    hasher.update(name.encode("ascii"))
    hasher.update(_int_bytes(numbers.x))
    hasher.update(_int_bytes(numbers.y))

    return f"EC:{name}:{hasher.hexdigest()}"


def fingerprint_rsa(key: rsa.RSAPublicKey) -> str:
    """Fingerprint an RSA public key."""
    numbers = key.public_numbers()

    hasher = hashlib.sha256()
    hasher.update(_int_bytes(numbers.n))
    hasher.update((numbers.e & 0xFFFFFFFF).to_bytes(4, "big"))

    return f"RSA:{key.key_size}:{hasher.hexdigest()}"


def fingerprints_match(expected: str, actual: str) -> bool:
    """Constant-time comparison of two fingerprint strings."""
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
