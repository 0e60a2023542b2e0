"""Lockbox - portable single-file secrets vault."""
from .version import __version__
from .exceptions import (
    VaultError,
    StorageError,
    CryptoError,
    AuthError,
    AuthFailure,
    StateError,
    NamespaceExistsError,
    NotFoundError,
)
from .storage import Store
from .vault import Vault, VaultConfig, TOTPSecret, User

__all__ = [
    "__version__",
    "Vault",
    "VaultConfig",
    "TOTPSecret",
    "User",
    "Store",
    "VaultError",
    "StorageError",
    "CryptoError",
    "AuthError",
    "AuthFailure",
    "StateError",
    "NamespaceExistsError",
    "NotFoundError",
]
