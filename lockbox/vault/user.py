"""
Vault Identity - a user and the personal key derived from their password.
"""
from .crypto import (
    USER_KEY_ITERATIONS,
    USER_KEY_LENGTH,
    derive_user_key,
    digest,
)


def hash_username(username: str) -> str:
    """Hex digest of a username, as it appears in metadata paths."""
    return digest(username).hex()


class User:
    """Someone allowed to open a namespace.

    The encryption key is derived on first use and cached for the session;
    it is never persisted. Call :meth:`wipe` to zero it.
    """

    def __init__(
        self,
        username: str,
        password: str,
        iterations: int = USER_KEY_ITERATIONS,
        key_length: int = USER_KEY_LENGTH,
    ):
        if not username:
            raise ValueError("Username cannot be empty")
        if not password:
            raise ValueError("Password cannot be empty")
        self.username = username
        self.password = password
        self._iterations = iterations
        self._key_length = key_length
        self._key: bytearray | None = None

    def __repr__(self) -> str:
        return f"<User {self.username!r}>"

    @property
    def username_hash(self) -> str:
        """Hex digest of the username, used in metadata paths."""
        return hash_username(self.username)

    @property
    def encryption_key(self) -> bytearray:
        """PBKDF2 key for this user, derived lazily."""
        if self._key is None:
            if not self.password:
                raise RuntimeError(f"Credentials of {self.username!r} were wiped")
            self._key = bytearray(
                derive_user_key(
                    self.password,
                    self.username,
                    iterations=self._iterations,
                    length=self._key_length,
                )
            )
        return self._key

    def wipe(self) -> None:
        """Zero cached key material and forget the password."""
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
            self._key = None
        self.password = ""
