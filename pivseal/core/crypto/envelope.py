"""
Envelope Format
===============

The persisted structure binding a device, a key fingerprint, the scheme
metadata, the nonce and the ciphertext.

File Format (JSON, fields in this order):
    {
      "dev": <uint32 device serial>,
      "kid": "<key fingerprint>",
      "meta": {"epk": "<b64>"} | {"eck": "<b64>"},
      "nonce": "<b64>",
      "enc": "<b64 ciphertext || tag>"
    }

Binary fields are unpadded standard base64. Output is indented with two
spaces, not ASCII- or HTML-escaped, and ends with a newline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Final

from pivseal.core.crypto.encoding import b64decode, b64encode
from pivseal.core.crypto.key_agreement import Metadata, metadata_from_dict
from pivseal.core.errors import MalformedEnvelopeError

MAX_SERIAL: Final[int] = 0xFFFFFFFF

_FIELDS: Final[tuple[str, ...]] = ("dev", "kid", "meta", "nonce", "enc")


def dump_json(value: Any) -> bytes:
    """
    Serialize a value the way envelopes and payloads are persisted.

    Two-space indentation, no escaping of HTML-unsafe or non-ASCII
    characters, trailing newline.
    """
    return (json.dumps(value, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


@dataclass(frozen=True, slots=True)
class Envelope:
    """
    Immutable encrypted envelope.

    Attributes:
        device: Serial of the PIV device holding the private key
        key_id: Fingerprint of the device public key used to seal
        metadata: Scheme-specific recovery data
        nonce: AES-GCM nonce
        ciphertext: Encrypted payload with appended authentication tag
    """

    device: int
    key_id: str
    metadata: Metadata
    nonce: bytes
    ciphertext: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "dev": self.device,
            "kid": self.key_id,
            "meta": self.metadata.to_dict(),
            "nonce": b64encode(self.nonce),
            "enc": b64encode(self.ciphertext),
        }

    def to_json(self) -> bytes:
        """Serialize to the persisted JSON form."""
        return dump_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "Envelope":
        """
        Build an envelope from decoded JSON.

        Raises:
            MalformedEnvelopeError: If any field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise MalformedEnvelopeError("Envelope must be a JSON object")

        missing = [name for name in _FIELDS if name not in data]
        if missing:
            raise MalformedEnvelopeError(f"Envelope is missing fields: {', '.join(missing)}")

        device = data["dev"]
        if isinstance(device, bool) or not isinstance(device, int) or not 0 <= device <= MAX_SERIAL:
            raise MalformedEnvelopeError("dev must be an unsigned 32-bit integer")

        key_id = data["kid"]
        if not isinstance(key_id, str):
            raise MalformedEnvelopeError("kid must be a string")

        return cls(
            device=device,
            key_id=key_id,
            metadata=metadata_from_dict(data["meta"]),
            nonce=b64decode(data["nonce"], field="nonce"),
            ciphertext=b64decode(data["enc"], field="enc"),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "Envelope":
        """
        Parse an envelope from compact or indented JSON.

        Raises:
            MalformedEnvelopeError: If the text is not a valid envelope
        """
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedEnvelopeError(f"Envelope is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def __repr__(self) -> str:
        return (
            f"Envelope(dev={self.device}, kid={self.key_id!r}, "
            f"meta={self.metadata!r}, enc_len={len(self.ciphertext)})"
        )
