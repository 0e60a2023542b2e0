"""
Vault Configuration - validated per-vault settings.

Settings can be read from environment variables:
    LOCKBOX_META_BUCKET = <bucket name for metadata>
    LOCKBOX_ISSUER = <TOTP issuer>
    LOCKBOX_ACCOUNT_DOMAIN = <suffix of the TOTP account name>
    LOCKBOX_KDF_ITERATIONS = <integer>
    LOCKBOX_TOTP_DIGITS / LOCKBOX_TOTP_INTERVAL / LOCKBOX_TOTP_WINDOW = <integer>
    LOCKBOX_KEY_ENCODING = raw | hex
    LOCKBOX_GENERIC_AUTH_ERRORS = true | false
    LOCKBOX_LOCK_TIMEOUT = <seconds>

Security Note:
    Changing kdf_iterations, user_key_length or key_encoding makes existing
    vault files unreadable.
"""
import os
import logging
from typing import Any, Callable

from pydantic import BaseModel, Field, field_validator

from .crypto import KEY_ENCODINGS

logger = logging.getLogger("lockbox.vault")

_ENV_PREFIX = "LOCKBOX_"
_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


# field name -> converter for its environment value
_ENV_FIELDS: dict[str, Callable[[str], Any]] = {
    "meta_bucket": str,
    "issuer": str,
    "account_domain": str,
    "kdf_iterations": int,
    "totp_digits": int,
    "totp_interval": int,
    "totp_window": int,
    "key_encoding": str,
    "generic_auth_errors": _env_bool,
    "lock_timeout": float,
}


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    meta_bucket: str = Field(default="lockbox")
    issuer: str = Field(default="lockbox", min_length=1)
    account_domain: str = Field(default="vault", min_length=1)
    kdf_iterations: int = Field(default=1024, ge=1)
    user_key_length: int = Field(default=128, ge=16, le=1024)
    totp_digits: int = Field(default=6)
    totp_interval: int = Field(default=30, ge=1)
    totp_window: int = Field(default=1, ge=0, le=10)
    key_encoding: str = Field(default="raw")
    generic_auth_errors: bool = False
    lock_timeout: float = Field(default=0.0, ge=0)

    model_config = {"frozen": True}

    @field_validator("meta_bucket")
    @classmethod
    def validate_meta_bucket(cls, v: str) -> str:
        """Metadata bucket name doubles as the metadata path root."""
        if not v or "/" in v:
            raise ValueError(f"Invalid metadata bucket name: {v!r}")
        return v

    @field_validator("totp_digits")
    @classmethod
    def validate_digits(cls, v: int) -> int:
        if v not in (6, 7, 8):
            raise ValueError(f"Unsupported TOTP length: {v}")
        return v

    @field_validator("key_encoding")
    @classmethod
    def validate_key_encoding(cls, v: str) -> str:
        """Validate passphrase key encoding is supported."""
        v = v.lower()
        if v not in KEY_ENCODINGS:
            raise ValueError(f"Unsupported key encoding: {v}")
        return v

    @property
    def meta_prefix(self) -> str:
        """Root of every metadata key, e.g. ``/lockbox/meta``."""
        return f"/{self.meta_bucket}/meta"

    def account_name(self, namespace: str) -> str:
        """TOTP account name for a namespace."""
        return f"{namespace}@{self.account_domain}"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables keep their defaults.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict[str, Any] = {}
        for name, convert in _ENV_FIELDS.items():
            raw = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = convert(raw)
        if values:
            logger.debug("Vault settings from environment: %s", sorted(values))
        return cls(**values)
