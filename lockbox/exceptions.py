"""
Lockbox Exceptions - error taxonomy shared by the vault and its storage backend.
"""
from enum import Enum


class VaultError(Exception):
    """Base class for every error raised by lockbox."""


class StorageError(VaultError):
    """The storage backend could not be opened, read or written."""


class CryptoError(VaultError):
    """Encryption failed, or a ciphertext did not authenticate."""


class StateError(VaultError):
    """Operation is not valid in the vault's current state."""


class NamespaceExistsError(StateError):
    """The namespace has already been initialized."""


class NotFoundError(VaultError):
    """A namespace, user, path or metadata record does not exist."""


class AuthFailure(str, Enum):
    """Reason an unlock attempt was rejected."""

    UNKNOWN_NAMESPACE = "unknown namespace"
    UNKNOWN_USER = "unknown user"
    CORRUPT_CREDENTIAL = "corrupt credential"
    INVALID_PASSWORD = "invalid password"
    CORRUPT_OTP_RECORD = "corrupt otp record"
    INVALID_CODE = "invalid code"


GENERIC_AUTH_MESSAGE = "authentication failed"


class AuthError(VaultError):
    """Credentials or one-time code were rejected.

    ``reason`` always identifies the failing check. The message is the
    reason text unless ``generic`` is set, in which case every failure
    reads the same to the caller.
    """

    def __init__(self, reason: AuthFailure, generic: bool = False):
        self.reason = reason
        super().__init__(GENERIC_AUTH_MESSAGE if generic else reason.value)
