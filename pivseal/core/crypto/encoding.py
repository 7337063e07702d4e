"""
Envelope Field Encoding
=======================

Binary envelope fields are stored as standard base64 without padding.
Decoding accepts padded input as well.
"""

from __future__ import annotations

import base64
import binascii

from pivseal.core.errors import MalformedEnvelopeError


def b64encode(data: bytes) -> str:
    """Encode bytes as unpadded standard base64."""
    return base64.b64encode(data).decode("ascii").rstrip("=")


def b64decode(text: str, field: str = "value") -> bytes:
    """
    Decode unpadded (or padded) standard base64.

    Raises:
        MalformedEnvelopeError: If the text is not valid base64
    """
    if not isinstance(text, str):
        raise MalformedEnvelopeError(f"{field} must be a base64 string")

    stripped = text.rstrip("=")
    try:
        return base64.b64decode(stripped + "=" * (-len(stripped) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEnvelopeError(f"{field} is not valid base64: {e}") from e
