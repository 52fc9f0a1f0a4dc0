"""
Password-based envelopes — scrypt + AES-256-GCM.

Used twice: for the credential vault inside an archive (v1) and
for wrapping a whole archive (v2). An envelope is a compact JSON
object that names its own algorithms and scrypt parameters:

    {"v":2,"kdf":"scrypt","n":131072,"r":8,"p":1,"alg":"aes-256-gcm",
     "salt":"...","nonce":"...","tag":"...","size":1234,"ciphertext":"..."}

A whole-archive envelope always starts with the bytes ``{"v":2,``
so a reader can spot it before trying to decompress anything.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import InvalidPassword

logger = logging.getLogger("clawback.crypto")

VAULT_VERSION = 1
ARCHIVE_VERSION = 2
ARCHIVE_MAGIC = b'{"v":2,'

KDF_NAME = "scrypt"
CIPHER_NAME = "aes-256-gcm"

VAULT_SCRYPT_N = 2**14
ARCHIVE_SCRYPT_N = 2**17
SCRYPT_R = 8
SCRYPT_P = 1

SALT_BYTES = 16
NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

MAX_SCRYPT_N = 2**20
MAX_SCRYPT_R = 32
MAX_SCRYPT_P = 16


def derive_key(password: str, salt: bytes, n: int, r: int = SCRYPT_R, p: int = SCRYPT_P) -> bytes:
    """Derive a 256-bit key from a password with scrypt."""
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def seal(plaintext: bytes, password: str, version: int, n: int, include_size: bool = False) -> bytes:
    """Encrypt bytes into a self-describing JSON envelope.

    Args:
        plaintext: Data to encrypt.
        password: Password the key is derived from.
        version: Envelope format version written as ``v``.
        n: scrypt cost parameter.
        include_size: Record the plaintext length as ``size``.

    Returns:
        bytes: UTF-8 JSON envelope.
    """
    salt = secrets.token_bytes(SALT_BYTES)
    nonce = secrets.token_bytes(NONCE_BYTES)
    key = derive_key(password, salt, n)

    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

    envelope: dict[str, Any] = {
        "v": version,
        "kdf": KDF_NAME,
        "n": n,
        "r": SCRYPT_R,
        "p": SCRYPT_P,
        "alg": CIPHER_NAME,
        "salt": _b64(salt),
        "nonce": _b64(nonce),
        "tag": _b64(tag),
    }
    if include_size:
        envelope["size"] = len(plaintext)
    envelope["ciphertext"] = _b64(ciphertext)

    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def unseal(data: bytes, password: str, default_n: int, label: str) -> bytes:
    """Decrypt a JSON envelope produced by ``seal``.

    Args:
        data: Envelope bytes.
        password: Candidate password.
        default_n: scrypt cost to assume for envelopes that omit ``n``.
        label: What is being opened, for error messages.

    Returns:
        bytes: The plaintext.

    Raises:
        InvalidPassword: With reason "malformed" if the envelope cannot be
            read, or "authentication" if the key does not verify the data.
    """
    try:
        envelope = json.loads(data.decode("utf-8"))
        if envelope.get("kdf", KDF_NAME) != KDF_NAME or envelope.get("alg", CIPHER_NAME) != CIPHER_NAME:
            raise ValueError("unsupported algorithm")
        salt = _unb64(envelope["salt"])
        nonce = _unb64(envelope["nonce"])
        tag = _unb64(envelope["tag"])
        ciphertext = _unb64(envelope["ciphertext"])
        n = _int_param(envelope.get("n", default_n))
        r = _int_param(envelope.get("r", SCRYPT_R))
        p = _int_param(envelope.get("p", SCRYPT_P))
        _check_params(salt, nonce, tag, n, r, p)
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError, binascii.Error) as exc:
        raise InvalidPassword(f"Invalid {label} format", reason="malformed") from exc

    try:
        key = derive_key(password, salt, n, r, p)
    except MemoryError as exc:
        raise InvalidPassword(f"Invalid {label} format", reason="malformed") from exc

    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        logger.debug("Authentication failed opening %s", label)
        raise InvalidPassword(
            f"Invalid password or corrupted {label}", reason="authentication"
        ) from exc


def encrypt_vault(plaintext: bytes, password: str, n: int = VAULT_SCRYPT_N) -> bytes:
    """Seal a credential vault payload in a v1 envelope."""
    return seal(plaintext, password, VAULT_VERSION, n)


def decrypt_vault(data: bytes, password: str) -> bytes:
    """Open a v1 credential vault envelope."""
    return unseal(data, password, VAULT_SCRYPT_N, "credentials vault")


def is_encrypted_archive(data: bytes) -> bool:
    """Check whether a container is wrapped in a whole-archive envelope."""
    return data[: len(ARCHIVE_MAGIC)] == ARCHIVE_MAGIC


def encrypt_archive(archive: bytes, password: str, n: int = ARCHIVE_SCRYPT_N) -> bytes:
    """Wrap a finished compressed archive in a v2 envelope."""
    return seal(archive, password, ARCHIVE_VERSION, n, include_size=True)


def decrypt_archive(data: bytes, password: str) -> bytes:
    """Open a v2 envelope and return the compressed archive inside."""
    return unseal(data, password, ARCHIVE_SCRYPT_N, "encrypted archive")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _int_param(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("scrypt parameters must be integers")
    return value


def _check_params(salt: bytes, nonce: bytes, tag: bytes, n: int, r: int, p: int) -> None:
    """Reject envelopes whose parameters no ``seal`` call would write."""
    if not salt:
        raise ValueError("empty salt")
    if len(nonce) != NONCE_BYTES:
        raise ValueError(f"nonce must be {NONCE_BYTES} bytes")
    if len(tag) != TAG_BYTES:
        raise ValueError(f"tag must be {TAG_BYTES} bytes")
    if n < 2 or n > MAX_SCRYPT_N or n & (n - 1):
        raise ValueError("scrypt n must be a power of two up to 2**20")
    if not 1 <= r <= MAX_SCRYPT_R:
        raise ValueError(f"scrypt r must be between 1 and {MAX_SCRYPT_R}")
    if not 1 <= p <= MAX_SCRYPT_P:
        raise ValueError(f"scrypt p must be between 1 and {MAX_SCRYPT_P}")
