"""
Vault - namespaced secret storage behind a password and a TOTP code.

Provides the public API of lockbox:
- ``Vault.open(path)`` - open or create a vault file (starts locked)
- ``init(namespace, username, password)`` - provision a namespace, return its TOTP secret
- ``unlock(namespace, username, password, code)`` / ``lock()``
- ``set_value(path, value)`` / ``get_value(path)`` / ``remove_value(path)``
- ``set_item`` / ``get_item`` / ``list_paths`` / ``count`` on the unlocked namespace

Storage layout:
    <meta bucket>  /lockbox/meta/{ns}/users/{usernameHash} -> encrypt(password, usernameHash)
                   /lockbox/meta/{ns}/otp/key              -> encrypt(otpauth URL, user key)
                   /lockbox/meta/{ns}/date/created         -> ISO-8601 UTC timestamp
    <ns bucket>    {path}                                  -> encrypt(value, user key)

Security Note:
    Never log passwords, keys, codes, plaintext or ciphertext. Only log
    namespaces, usernames, paths and operations. Unlock failures keep a
    distinct ``AuthError.reason`` for callers and logs; set
    ``generic_auth_errors`` to hide it from the message.
"""
import hmac
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from ..exceptions import (
    AuthError,
    AuthFailure,
    CryptoError,
    NamespaceExistsError,
    NotFoundError,
    StateError,
)
from ..storage import Store
from .config import VaultConfig
from .crypto import (
    decrypt,
    encrypt,
    serialize_value,
    deserialize_value,
)
from .otp import TOTPSecret
from .user import User, hash_username

logger = logging.getLogger("lockbox.vault")

ItemPath = Union[str, bytes]
Value = Union[str, bytes]


@dataclass(frozen=True)
class Locked:
    """No session; only init and unlock are possible."""


@dataclass(frozen=True)
class Unlocked:
    """Authenticated session bound to one user and namespace."""

    user: User
    namespace: str

    @property
    def key(self) -> bytearray:
        return self.user.encryption_key


LOCKED = Locked()


def _as_bytes(value: ItemPath) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class Vault:
    """Encrypted, namespaced key/value vault.

    A vault starts ``Locked``. ``unlock()`` verifies the password and the
    current TOTP code and binds a session to one namespace; values are
    then sealed with the user's derived key. ``lock()`` or ``close()``
    discards the session.
    """

    def __init__(
        self,
        store: Store,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or VaultConfig()
        self._clock = clock
        self._state: Union[Locked, Unlocked] = LOCKED
        self._mutex = threading.RLock()
        with self._store.update() as tx:
            tx.create_bucket_if_not_exists(self._config.meta_bucket)

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> "Vault":
        """Open or create the vault file at ``path``.

        Raises:
            StorageError: If the file cannot be opened or is in use.
        """
        config = config or VaultConfig()
        store = Store.open(path, timeout=config.lock_timeout)
        try:
            vault = cls(store, config=config, clock=clock)
        except BaseException:
            store.close()
            raise
        logger.info("Vault opened: %s", path)
        return vault

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        if isinstance(self._state, Unlocked):
            return f"<Vault unlocked namespace={self._state.namespace!r}>"
        return "<Vault locked>"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def state(self) -> Union[Locked, Unlocked]:
        return self._state

    @property
    def is_locked(self) -> bool:
        return not isinstance(self._state, Unlocked)

    @property
    def namespace(self) -> Optional[str]:
        """Namespace of the open session, None while locked."""
        if isinstance(self._state, Unlocked):
            return self._state.namespace
        return None

    @property
    def username(self) -> Optional[str]:
        if isinstance(self._state, Unlocked):
            return self._state.user.username
        return None

    def _session(self) -> Unlocked:
        state = self._state
        if not isinstance(state, Unlocked):
            raise StateError("locked")
        return state

    # ------------------------------------------------------------------
    # Validation and metadata paths
    # ------------------------------------------------------------------

    def _validate_namespace(self, namespace: str) -> None:
        """Validate a namespace name.

        Raises:
            ValueError: If the name is empty, contains '/', or collides
                with the metadata bucket.
        """
        if not namespace:
            raise ValueError("Namespace cannot be empty")
        if "/" in namespace:
            raise ValueError("Namespace cannot contain '/'")
        if namespace == self._config.meta_bucket:
            raise ValueError(f"Namespace {namespace!r} is reserved")

    def _meta_key(self, *parts: str) -> str:
        return "/".join((self._config.meta_prefix, *parts))

    def _user_key(self, namespace: str, username_hash: str) -> str:
        return self._meta_key(namespace, "users", username_hash)

    def _otp_key(self, namespace: str) -> str:
        return self._meta_key(namespace, "otp", "key")

    def _created_key(self, namespace: str) -> str:
        return self._meta_key(namespace, "date", "created")

    def _new_user(self, username: str, password: str) -> User:
        return User(
            username,
            password,
            iterations=self._config.kdf_iterations,
            key_length=self._config.user_key_length,
        )

    def _auth_error(self, reason: AuthFailure) -> AuthError:
        return AuthError(reason, generic=self._config.generic_auth_errors)

    # ------------------------------------------------------------------
    # Provisioning and authentication
    # ------------------------------------------------------------------

    def init(self, namespace: str, username: str, password: str) -> TOTPSecret:
        """Provision ``namespace`` with its first user and TOTP secret.

        The returned secret is the only time it is exposed; the caller
        must hand it to an authenticator app. Every record is written in
        a single transaction.

        Args:
            namespace: Namespace to create.
            username: Name of the initializing user.
            password: That user's password.

        Returns:
            The namespace's TOTP secret.

        Raises:
            ValueError: If an argument is empty or the namespace name is invalid.
            NamespaceExistsError: If the namespace was already initialized.
            StorageError: If the records cannot be written.
        """
        self._validate_namespace(namespace)
        user = self._new_user(username, password)
        config = self._config
        with self._mutex, self._store.view() as tx:
            initialized = tx.get(config.meta_bucket, self._otp_key(namespace))
        if initialized is not None:
            raise NamespaceExistsError(
                f"Namespace {namespace!r} is already initialized"
            )
        try:
            username_hash = user.username_hash
            credential = encrypt(
                password.encode("utf-8"), username_hash, config.key_encoding,
            )
            secret = TOTPSecret.generate(
                config.issuer,
                config.account_name(namespace),
                digits=config.totp_digits,
                interval=config.totp_interval,
            )
            otp_record = encrypt(
                secret.serialize().encode("utf-8"),
                user.encryption_key,
                config.key_encoding,
            )
        finally:
            user.wipe()
        created = datetime.fromtimestamp(self._clock(), tz=timezone.utc)

        with self._mutex, self._store.update() as tx:
            # recheck under the write transaction
            if tx.get(config.meta_bucket, self._otp_key(namespace)) is not None:
                raise NamespaceExistsError(
                    f"Namespace {namespace!r} is already initialized"
                )
            tx.create_bucket_if_not_exists(namespace)
            tx.put(
                config.meta_bucket,
                self._user_key(namespace, username_hash),
                credential,
            )
            tx.put(config.meta_bucket, self._otp_key(namespace), otp_record)
            tx.put(
                config.meta_bucket,
                self._created_key(namespace),
                created.isoformat().encode("ascii"),
            )
        logger.info("Vault init: namespace=%s user=%s", namespace, username)
        return secret

    def unlock(self, namespace: str, username: str, password: str, code: str) -> None:
        """Authenticate and open a session on ``namespace``.

        Any previous session is discarded first, so a failed attempt
        always leaves the vault locked.

        Raises:
            AuthError: If the namespace, user, password or code is rejected.
            StorageError: If the metadata cannot be read.
        """
        with self._mutex:
            self.lock()
            try:
                user = self._authenticate(namespace, username, password, code)
            except AuthError as err:
                logger.warning(
                    "Vault unlock failed: namespace=%s user=%s reason=%s",
                    namespace, username, err.reason.value,
                )
                raise
            self._state = Unlocked(user=user, namespace=namespace)
        logger.info("Vault unlocked: namespace=%s user=%s", namespace, username)

    def _authenticate(
        self, namespace: str, username: str, password: str, code: str,
    ) -> User:
        config = self._config
        with self._store.view() as tx:
            otp_record = tx.get(config.meta_bucket, self._otp_key(namespace))
            if otp_record is None:
                raise self._auth_error(AuthFailure.UNKNOWN_NAMESPACE)
            if not username:
                raise self._auth_error(AuthFailure.UNKNOWN_USER)
            username_hash = hash_username(username)
            credential = tx.get(
                config.meta_bucket, self._user_key(namespace, username_hash),
            )
            if credential is None:
                raise self._auth_error(AuthFailure.UNKNOWN_USER)

        try:
            stored_password = decrypt(credential, username_hash, config.key_encoding)
        except CryptoError as err:
            raise self._auth_error(AuthFailure.CORRUPT_CREDENTIAL) from err
        if not password or not hmac.compare_digest(
            stored_password, password.encode("utf-8"),
        ):
            raise self._auth_error(AuthFailure.INVALID_PASSWORD)

        user = self._new_user(username, password)
        try:
            secret = TOTPSecret.from_url(
                decrypt(otp_record, user.encryption_key, config.key_encoding).decode("utf-8")
            )
        except (CryptoError, ValueError) as err:
            user.wipe()
            raise self._auth_error(AuthFailure.CORRUPT_OTP_RECORD) from err
        if not secret.validate(code, for_time=self._clock(), window=config.totp_window):
            user.wipe()
            raise self._auth_error(AuthFailure.INVALID_CODE)
        return user

    def lock(self) -> None:
        """Discard the session and wipe its key. Idempotent."""
        with self._mutex:
            state = self._state
            self._state = LOCKED
            if isinstance(state, Unlocked):
                state.user.wipe()
                logger.info("Vault locked: namespace=%s", state.namespace)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def set_value(self, path: ItemPath, value: Value) -> None:
        """Encrypt ``value`` and store it at ``path``, overwriting.

        Raises:
            StateError: If the vault is locked.
            StorageError: If the value cannot be written.
        """
        with self._mutex:
            session = self._session()
            key = _as_bytes(path)
            enc = encrypt(_as_bytes(value), session.key, self._config.key_encoding)
            with self._store.update() as tx:
                tx.put(session.namespace, key, enc)
        logger.debug("Vault set: namespace=%s path=%r", session.namespace, key)

    def get_value(self, path: ItemPath) -> bytes:
        """Decrypt and return the value stored at ``path``.

        Raises:
            StateError: If the vault is locked.
            NotFoundError: If nothing is stored at ``path``.
            CryptoError: If the record does not decrypt under the session key.
        """
        with self._mutex:
            session = self._session()
            key = _as_bytes(path)
            with self._store.view() as tx:
                enc = tx.get(session.namespace, key)
            if enc is None:
                raise NotFoundError(f"No value at {key!r} in {session.namespace!r}")
            value = decrypt(enc, session.key, self._config.key_encoding)
        logger.debug("Vault get: namespace=%s path=%r", session.namespace, key)
        return value

    def remove_value(self, path: ItemPath) -> None:
        """Delete the value stored at ``path``.

        Raises:
            StateError: If the vault is locked.
            NotFoundError: If nothing is stored at ``path``.
        """
        with self._mutex:
            session = self._session()
            key = _as_bytes(path)
            with self._store.update() as tx:
                removed = tx.delete(session.namespace, key)
            if not removed:
                raise NotFoundError(f"No value at {key!r} in {session.namespace!r}")
        logger.debug("Vault remove: namespace=%s path=%r", session.namespace, key)

    def list_paths(self, prefix: ItemPath = b"") -> list[bytes]:
        """Sorted paths stored in the current namespace under ``prefix``."""
        with self._mutex:
            session = self._session()
            with self._store.view() as tx:
                return tx.keys(session.namespace, _as_bytes(prefix))

    def count(self) -> int:
        """Number of values stored in the current namespace."""
        with self._mutex:
            session = self._session()
            with self._store.view() as tx:
                return tx.count(session.namespace)

    def set_item(self, path: ItemPath, value: Any) -> None:
        """Store a structured value (str, int, float, dict, list, bytes, bool, None)."""
        self.set_value(path, serialize_value(value))

    def get_item(self, path: ItemPath) -> Any:
        """Return a value stored with :meth:`set_item`."""
        return deserialize_value(self.get_value(path))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, path: str) -> bytes:
        """Raw metadata record under ``/lockbox/meta/{path}``.

        Raises:
            NotFoundError: If no record exists at that path.
        """
        with self._mutex, self._store.view() as tx:
            meta = tx.get(self._config.meta_bucket, self._meta_key(path))
        if meta is None:
            raise NotFoundError(f"Invalid metadata path: {path!r}")
        return meta

    def created(self, namespace: str) -> datetime:
        """When ``namespace`` was initialized."""
        raw = self.get_metadata(f"{namespace}/date/created")
        return datetime.fromisoformat(raw.decode("ascii"))

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Lock the vault and release the storage file. Idempotent."""
        with self._mutex:
            self.lock()
            if not self._store.closed:
                self._store.close()
                logger.info("Vault closed: %s", self._store.path)
