"""Vault - password and TOTP protected secret storage.

Security Note (Threat Model):
    Secrets and the session key are decrypted in process memory while the
    vault is unlocked. lock() zeroes the cached key, but Python cannot
    guarantee that no other copy of a password or plaintext survives in
    memory. Record keys are MD5 digests of passphrases, kept for file
    compatibility; they are not a substitute for a memory-hard KDF.
"""

from .secret_vault import Vault, Locked, Unlocked
from .config import VaultConfig
from .otp import TOTPSecret
from .user import User

__all__ = [
    "Vault",
    "Locked",
    "Unlocked",
    "VaultConfig",
    "TOTPSecret",
    "User",
]
