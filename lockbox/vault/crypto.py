"""
Vault Crypto Core - Digest, passphrase encryption, user key derivation and serialization.

Every stored record is sealed the same way:
- key   = digest(passphrase)             (MD5, 16 bytes -> AES-128)
- value = [nonce 12B][encrypted_payload + GCM_tag 16B]

User encryption keys are PBKDF2-HMAC-SHA512(password, salt=username).

Security Note:
    digest() is a fingerprint, not a password hardening function. Using it
    directly as a cipher key keeps vault files readable by earlier releases.
    Never log plaintext, ciphertext or key material.
"""
import os
import base64
import logging
from pathlib import Path
from typing import Any, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import CryptoError

logger = logging.getLogger("lockbox.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
USER_KEY_ITERATIONS = 1024
USER_KEY_LENGTH = 128

KEY_ENCODINGS = ("raw", "hex")

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

Passphrase = Union[str, bytes, bytearray]


def _to_bytes(value: Passphrase) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


# ---------------------------------------------------------------------------
# Digest and key derivation
# ---------------------------------------------------------------------------

def digest(data: Passphrase) -> bytes:
    """Return the 16-byte MD5 fingerprint of ``data``.

    Deterministic and non-secret. Used to turn passphrases into cipher keys
    and to pseudonymize usernames in metadata paths.
    """
    hasher = hashes.Hash(hashes.MD5())
    hasher.update(_to_bytes(data))
    return hasher.finalize()


def passphrase_key(passphrase: Passphrase, key_encoding: str = "raw") -> bytes:
    """Derive the AES key used to seal a record under ``passphrase``.

    Args:
        passphrase: Text or raw bytes (e.g. a derived user key).
        key_encoding: ``"raw"`` uses the 16 digest bytes (AES-128).
            ``"hex"`` uses the 32-character hex digest as key (AES-256),
            the layout written by the earlier Go releases.

    Raises:
        ValueError: If ``key_encoding`` is unknown.
    """
    if key_encoding == "raw":
        return digest(passphrase)
    if key_encoding == "hex":
        return digest(passphrase).hex().encode("ascii")
    raise ValueError(f"Unsupported key encoding: {key_encoding}")


def derive_user_key(
    password: str,
    username: str,
    iterations: int = USER_KEY_ITERATIONS,
    length: int = USER_KEY_LENGTH,
) -> bytes:
    """Derive a user's personal encryption key.

    PBKDF2-HMAC-SHA512 with the username as salt. Same inputs always
    produce the same key; nothing is persisted.

    Args:
        password: User password.
        username: User name, used as salt.
        iterations: PBKDF2 iteration count.
        length: Output length in bytes.

    Returns:
        ``length`` bytes of key material.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=length,
        salt=username.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Record encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, passphrase: Passphrase, key_encoding: str = "raw") -> bytes:
    """Seal ``plaintext`` under a key derived from ``passphrase``.

    Format: [nonce 12B][encrypted_payload + GCM_tag 16B]

    Raises:
        CryptoError: If the cipher cannot be built or no randomness is available.
    """
    try:
        cipher = AESGCM(passphrase_key(passphrase, key_encoding))
        nonce = os.urandom(NONCE_SIZE)
        ct = cipher.encrypt(nonce, bytes(plaintext), None)
    except (ValueError, OSError, NotImplementedError) as err:
        raise CryptoError(f"Encryption failed: {err}") from err
    return nonce + ct


def decrypt(ciphertext: bytes, passphrase: Passphrase, key_encoding: str = "raw") -> bytes:
    """Open a record sealed by :func:`encrypt`.

    Raises:
        CryptoError: If the input is truncated, the key is wrong or the
            record was modified. No plaintext is returned in that case.
    """
    _min = NONCE_SIZE + TAG_SIZE
    if len(ciphertext) < _min:
        raise CryptoError(
            f"ciphertext too short: {len(ciphertext)} bytes (minimum {_min})"
        )
    try:
        cipher = AESGCM(passphrase_key(passphrase, key_encoding))
    except ValueError as err:
        raise CryptoError(f"Decryption failed: {err}") from err
    nonce = ciphertext[:NONCE_SIZE]
    ct = ciphertext[NONCE_SIZE:]
    try:
        return cipher.decrypt(nonce, ct, None)
    except InvalidTag as err:
        raise CryptoError("Decryption failed: authentication tag mismatch") from err


def encrypt_file(
    path: Union[str, Path],
    data: bytes,
    passphrase: Passphrase,
    key_encoding: str = "raw",
) -> None:
    """Encrypt ``data`` and write it to ``path``, replacing any content."""
    enc = encrypt(data, passphrase, key_encoding)
    Path(path).write_bytes(enc)
    logger.debug("Encrypted %d byte(s) to %s", len(data), path)


def decrypt_file(
    path: Union[str, Path],
    passphrase: Passphrase,
    key_encoding: str = "raw",
) -> bytes:
    """Read ``path`` and decrypt its content."""
    return decrypt(Path(path).read_bytes(), passphrase, key_encoding)


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to bytes for encryption.

    Supports: str, int, float, dict, list, bytes, bool, None.
    bytes values are wrapped as {"__vault_bytes_b64__": "<base64>"} for safe JSON round-trip.

    Args:
        value: Python value to serialize.

    Returns:
        orjson-encoded bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        wrapped = {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
        return orjson.dumps(wrapped)
    return orjson.dumps(value)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes back to a Python value.

    Args:
        data: orjson-encoded bytes from serialize_value.

    Returns:
        Original Python value.
    """
    parsed = orjson.loads(data)
    if isinstance(parsed, dict) and _BYTES_WRAPPER_KEY in parsed and len(parsed) == 1:
        return base64.b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed
