"""Tests for password-based envelopes."""

from __future__ import annotations

import base64
import json

import pytest

from clawback.crypto import (
    ARCHIVE_MAGIC,
    VAULT_SCRYPT_N,
    decrypt_archive,
    decrypt_vault,
    encrypt_archive,
    encrypt_vault,
    is_encrypted_archive,
)
from clawback.errors import InvalidPassword

FAST_N = 2**10


class TestVaultEnvelope:
    """v1 envelopes used for the credential vault."""

    def test_roundtrip(self) -> None:
        sealed = encrypt_vault(b'{"gateway": []}', "pw", n=FAST_N)
        assert decrypt_vault(sealed, "pw") == b'{"gateway": []}'

    def test_envelope_fields(self) -> None:
        envelope = json.loads(encrypt_vault(b"data", "pw", n=FAST_N))

        assert list(envelope) == ["v", "kdf", "n", "r", "p", "alg", "salt", "nonce", "tag", "ciphertext"]
        assert envelope["v"] == 1
        assert envelope["kdf"] == "scrypt"
        assert envelope["alg"] == "aes-256-gcm"
        assert envelope["n"] == FAST_N
        assert len(base64.b64decode(envelope["salt"])) == 16
        assert len(base64.b64decode(envelope["nonce"])) == 12
        assert len(base64.b64decode(envelope["tag"])) == 16

    def test_default_cost(self) -> None:
        envelope = json.loads(encrypt_vault(b"x", "pw"))
        assert envelope["n"] == VAULT_SCRYPT_N

    def test_fresh_salt_and_nonce(self) -> None:
        first = json.loads(encrypt_vault(b"same", "pw", n=FAST_N))
        second = json.loads(encrypt_vault(b"same", "pw", n=FAST_N))
        assert first["salt"] != second["salt"]
        assert first["nonce"] != second["nonce"]

    def test_wrong_password(self) -> None:
        sealed = encrypt_vault(b"secret", "right", n=FAST_N)
        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(sealed, "wrong")
        assert exc_info.value.reason == "authentication"

    def test_tampered_ciphertext(self) -> None:
        envelope = json.loads(encrypt_vault(b"secret data", "pw", n=FAST_N))
        raw = bytearray(base64.b64decode(envelope["ciphertext"]))
        raw[0] ^= 0xFF
        envelope["ciphertext"] = base64.b64encode(bytes(raw)).decode()

        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(json.dumps(envelope).encode(), "pw")
        assert exc_info.value.reason == "authentication"

    @pytest.mark.parametrize(
        "data",
        [b"not json", b"[]", b'{"v":1}', b'{"v":1,"salt":"!!","nonce":"","tag":"","ciphertext":""}'],
    )
    def test_malformed(self, data: bytes) -> None:
        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(data, "pw")
        assert exc_info.value.reason == "malformed"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("n", 2**40),
            ("n", 2**21),
            ("n", 3),
            ("n", 1),
            ("n", "1024"),
            ("n", True),
            ("r", 0),
            ("r", 64),
            ("p", 0),
            ("p", 1000),
            ("nonce", "AAAA"),
            ("tag", base64.b64encode(b"short").decode()),
            ("salt", ""),
        ],
    )
    def test_bad_parameters_are_malformed(self, field: str, value: object) -> None:
        envelope = json.loads(encrypt_vault(b"secret", "pw", n=FAST_N))
        envelope[field] = value

        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(json.dumps(envelope).encode(), "pw")
        assert exc_info.value.reason == "malformed"

    def test_key_derivation_out_of_memory(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sealed = encrypt_vault(b"secret", "pw", n=FAST_N)

        def exhausted(*args, **kwargs):
            raise MemoryError("Not enough memory to derive key")

        monkeypatch.setattr("clawback.crypto.derive_key", exhausted)
        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(sealed, "pw")
        assert exc_info.value.reason == "malformed"

    def test_unsupported_algorithm(self) -> None:
        envelope = json.loads(encrypt_vault(b"x", "pw", n=FAST_N))
        envelope["alg"] = "chacha20"
        with pytest.raises(InvalidPassword) as exc_info:
            decrypt_vault(json.dumps(envelope).encode(), "pw")
        assert exc_info.value.reason == "malformed"


class TestArchiveEnvelope:
    """v2 envelopes wrapping a whole archive."""

    def test_roundtrip_and_magic(self) -> None:
        payload = b"\x1f\x8b" + bytes(range(256))
        sealed = encrypt_archive(payload, "pw", n=FAST_N)

        assert sealed.startswith(ARCHIVE_MAGIC)
        assert is_encrypted_archive(sealed)
        assert json.loads(sealed)["size"] == len(payload)
        assert decrypt_archive(sealed, "pw") == payload

    def test_plain_gzip_not_detected(self) -> None:
        assert not is_encrypted_archive(b"\x1f\x8b\x08\x00")
        assert not is_encrypted_archive(b"")

    def test_wrong_password(self) -> None:
        sealed = encrypt_archive(b"data", "pw", n=FAST_N)
        with pytest.raises(InvalidPassword):
            decrypt_archive(sealed, "nope")
