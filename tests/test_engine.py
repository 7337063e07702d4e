"""
Tests for the envelope engine.

Covers sealing and opening over every supported key family, payload
integrity, and the key check that precedes any decryption.
"""

import json
from dataclasses import replace
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from pivseal.core.crypto.aes_gcm import AES_NONCE_SIZE, AES_TAG_SIZE, AesGcmCipher
from pivseal.core.crypto.engine import EnvelopeEngine
from pivseal.core.crypto.envelope import Envelope, dump_json
from pivseal.core.crypto.key_agreement import ECMetadata, LocalDecrypter, RSAMetadata
from pivseal.core.errors import (
    DecryptionError,
    KeyMismatchError,
    MalformedEnvelopeError,
    UnsupportedKeyError,
)

SCENARIO = {"keys": ["AA=="], "root_token": "s.abc123"}

PAYLOADS = [
    {},
    [],
    SCENARIO,
    {"nested": {"list": [1, 2.5, None, True], "text": "ünïcødé <&>"}},
    "plain string",
]


def _flip(data: bytes, bit: int) -> bytes:
    buf = bytearray(data)
    buf[bit // 8] ^= 1 << (bit % 8)
    return bytes(buf)


class CountingDecrypter(LocalDecrypter):
    """LocalDecrypter that counts private-key operations."""

    __slots__ = ("calls",)

    def __init__(self, private_key):
        super().__init__(private_key)
        self.calls = 0

    def exchange(self, peer_public_key):
        self.calls += 1
        return super().exchange(peer_public_key)

    def decrypt(self, ciphertext):
        self.calls += 1
        return super().decrypt(ciphertext)


@pytest.fixture
def engine():
    return EnvelopeEngine()


class TestRoundTrip:
    """seal() followed by open() returns the original payload."""

    @pytest.mark.parametrize("key_fixture", ["p256_key", "p384_key", "p521_key", "rsa_key"])
    @pytest.mark.parametrize("payload", PAYLOADS)
    def test_open_returns_payload(self, engine, request, key_fixture, payload):
        key = request.getfixturevalue(key_fixture)

        envelope = engine.seal(payload, key.public_key(), device=42)

        assert engine.open(envelope, LocalDecrypter(key)) == payload

    def test_envelope_fields(self, engine, p256_key):
        envelope = engine.seal({}, p256_key.public_key(), device=12345678)

        assert envelope.device == 12345678
        assert envelope.key_id.startswith("EC:P-256:")
        assert isinstance(envelope.metadata, ECMetadata)
        assert len(envelope.metadata.ephemeral_key) == 65
        assert len(envelope.nonce) == AES_NONCE_SIZE
        assert len(envelope.ciphertext) == len(dump_json({})) + AES_TAG_SIZE

    def test_rsa_envelope_metadata(self, engine, rsa_key):
        envelope = engine.seal({}, rsa_key.public_key())

        assert envelope.key_id.startswith("RSA:2048:")
        assert isinstance(envelope.metadata, RSAMetadata)
        assert len(envelope.metadata.cipher_key) == 256

    def test_fresh_secret_per_seal(self, engine, p256_key):
        first = engine.seal(SCENARIO, p256_key.public_key())
        second = engine.seal(SCENARIO, p256_key.public_key())

        assert first.metadata != second.metadata
        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_survives_persistence(self, engine, p384_key):
        envelope = engine.seal(SCENARIO, p384_key.public_key(), device=7)
        restored = Envelope.from_json(envelope.to_json())

        assert restored == envelope
        assert engine.open(restored, LocalDecrypter(p384_key)) == SCENARIO


class TestScenario:
    """Vault init bundle sealed to an EC key."""

    def test_byte_identical_json(self, engine, p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key(), device=1)
        decrypter = LocalDecrypter(p256_key)

        assert engine.open_bytes(envelope, decrypter) == dump_json(SCENARIO)
        assert dump_json(engine.open(envelope, decrypter)) == dump_json(SCENARIO)

    def test_flipped_enc_bit_fails(self, engine, p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key(), device=1)
        tampered = replace(envelope, ciphertext=_flip(envelope.ciphertext, 5))

        with pytest.raises(DecryptionError):
            engine.open(tampered, LocalDecrypter(p256_key))


class TestIntegrity:
    """Any modification of the nonce or ciphertext is rejected."""

    def test_every_nonce_bit(self, engine, p256_key):
        envelope = engine.seal({}, p256_key.public_key())
        decrypter = LocalDecrypter(p256_key)

        for bit in range(len(envelope.nonce) * 8):
            tampered = replace(envelope, nonce=_flip(envelope.nonce, bit))
            with pytest.raises(DecryptionError):
                engine.open(tampered, decrypter)

    def test_every_ciphertext_bit(self, engine, p256_key):
        envelope = engine.seal({}, p256_key.public_key())
        decrypter = LocalDecrypter(p256_key)

        for bit in range(len(envelope.ciphertext) * 8):
            tampered = replace(envelope, ciphertext=_flip(envelope.ciphertext, bit))
            with pytest.raises(DecryptionError):
                engine.open(tampered, decrypter)

    def test_rsa_ciphertext_bit(self, engine, rsa_key):
        envelope = engine.seal(SCENARIO, rsa_key.public_key())
        tampered = replace(envelope, ciphertext=_flip(envelope.ciphertext, 0))

        with pytest.raises(DecryptionError):
            engine.open(tampered, LocalDecrypter(rsa_key))

    def test_truncated_ciphertext(self, engine, p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key())
        tampered = replace(envelope, ciphertext=envelope.ciphertext[:AES_TAG_SIZE - 1])

        with pytest.raises(DecryptionError):
            engine.open(tampered, LocalDecrypter(p256_key))

    def test_corrupted_wrapped_key(self, engine, rsa_key):
        envelope = engine.seal(SCENARIO, rsa_key.public_key())
        wrapped = _flip(envelope.metadata.cipher_key, 100)
        tampered = replace(envelope, metadata=RSAMetadata(cipher_key=wrapped))

        with pytest.raises(DecryptionError):
            engine.open(tampered, LocalDecrypter(rsa_key))

    def test_wrong_nonce_length(self, engine, p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key())
        tampered = replace(envelope, nonce=b"")

        with pytest.raises(DecryptionError):
            engine.open(tampered, LocalDecrypter(p256_key))

    def test_non_json_payload(self, engine, p256_key):
        envelope = engine.seal_bytes(b"not json", p256_key.public_key())
        decrypter = LocalDecrypter(p256_key)

        assert engine.open_bytes(envelope, decrypter) == b"not json"
        with pytest.raises(DecryptionError):
            engine.open(envelope, decrypter)


class TestKeyCheck:
    """Key identity is verified before any cryptographic work."""

    def test_mismatch_raises_before_decryption(self, engine, p256_key, other_p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key())
        decrypter = CountingDecrypter(other_p256_key)

        with patch.object(AesGcmCipher, "decrypt") as aead:
            with pytest.raises(KeyMismatchError) as exc_info:
                engine.open(envelope, decrypter)

        aead.assert_not_called()
        assert decrypter.calls == 0
        assert exc_info.value.expected == envelope.key_id

    def test_mismatch_across_families(self, engine, p256_key, rsa_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key())

        with pytest.raises(KeyMismatchError):
            engine.open(envelope, LocalDecrypter(rsa_key))

    def test_tampered_kid(self, engine, p256_key):
        envelope = engine.seal(SCENARIO, p256_key.public_key())
        tampered = replace(envelope, key_id="EC:P-256:" + "0" * 64)

        with pytest.raises(KeyMismatchError):
            engine.open(tampered, LocalDecrypter(p256_key))

    def test_check_key_returns_fingerprint(self, engine, rsa_key):
        envelope = engine.seal({}, rsa_key.public_key())

        assert engine.check_key(envelope, rsa_key.public_key()) == envelope.key_id

    def test_metadata_for_other_family(self, engine, rsa_key, p256_key):
        envelope = engine.seal(SCENARIO, rsa_key.public_key())
        ec_meta = engine.seal(SCENARIO, p256_key.public_key()).metadata
        tampered = replace(envelope, metadata=ec_meta)

        with pytest.raises(MalformedEnvelopeError):
            engine.open(tampered, LocalDecrypter(rsa_key))


class TestUnsupportedKeys:
    """Only EC (P-256/384/521) and RSA keys can seal envelopes."""

    def test_ed25519(self, engine):
        key = ed25519.Ed25519PrivateKey.generate()

        with pytest.raises(UnsupportedKeyError):
            engine.seal({}, key.public_key())

    def test_unsupported_curve(self, engine):
        key = ec.generate_private_key(ec.SECP256K1())

        with pytest.raises(UnsupportedKeyError):
            engine.seal({}, key.public_key())

    def test_payload_must_serialize(self, engine, p256_key):
        with pytest.raises(TypeError):
            engine.seal({"value": object()}, p256_key.public_key())


def test_sealed_payload_not_in_envelope(p256_key):
    envelope = EnvelopeEngine().seal(SCENARIO, p256_key.public_key())
    text = envelope.to_json().decode("utf-8")

    assert "s.abc123" not in text
    assert json.loads(text)["kid"] == envelope.key_id
