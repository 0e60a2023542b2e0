"""
Vault TOTP - one-time password secrets for the second unlock factor.

Secrets are exchanged as standard ``otpauth://totp/`` URLs so any
authenticator app can be provisioned from the value returned by init.
"""
import os
import time
import base64
import logging
from urllib.parse import urlparse, parse_qs, unquote

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

logger = logging.getLogger("lockbox.vault")

SECRET_SIZE = 20  # 160-bit shared key, the RFC 4226 recommendation

_ALGORITHMS = {
    "SHA1": hashes.SHA1,
    "SHA256": hashes.SHA256,
    "SHA512": hashes.SHA512,
}


def _b32decode(secret: str) -> bytes:
    cleaned = secret.strip().replace(" ", "").upper()
    padding = "=" * (-len(cleaned) % 8)
    return base64.b32decode(cleaned + padding)


class TOTPSecret:
    """Shared TOTP key with its provisioning details."""

    def __init__(
        self,
        key: bytes,
        issuer: str,
        account_name: str,
        digits: int = 6,
        interval: int = 30,
        algorithm: str = "SHA1",
    ):
        algorithm = algorithm.upper()
        if algorithm not in _ALGORITHMS:
            raise ValueError(f"Unsupported TOTP algorithm: {algorithm}")
        self.key = bytes(key)
        self.issuer = issuer
        self.account_name = account_name
        self.digits = digits
        self.interval = interval
        self.algorithm = algorithm
        self._totp = TOTP(
            self.key, digits, _ALGORITHMS[algorithm](), interval,
        )

    def __repr__(self) -> str:
        return f"<TOTPSecret {self.issuer}:{self.account_name}>"

    def __str__(self) -> str:
        return self.serialize()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TOTPSecret):
            return NotImplemented
        return self.serialize() == other.serialize()

    @classmethod
    def generate(
        cls,
        issuer: str,
        account_name: str,
        digits: int = 6,
        interval: int = 30,
    ) -> "TOTPSecret":
        """Create a secret with a fresh random key."""
        return cls(
            os.urandom(SECRET_SIZE), issuer, account_name,
            digits=digits, interval=interval,
        )

    @property
    def secret(self) -> str:
        """Base32 text of the shared key, without padding."""
        return base64.b32encode(self.key).decode("ascii").rstrip("=")

    def serialize(self) -> str:
        """Return the ``otpauth://`` provisioning URL."""
        return self._totp.get_provisioning_uri(self.account_name, self.issuer)

    @classmethod
    def from_url(cls, url: str) -> "TOTPSecret":
        """Parse an ``otpauth://totp/`` URL.

        Raises:
            ValueError: If the URL is not a valid TOTP provisioning URL.
        """
        parsed = urlparse(url)
        if parsed.scheme != "otpauth" or parsed.netloc != "totp":
            raise ValueError("Not an otpauth://totp/ URL")
        query = parse_qs(parsed.query)
        if "secret" not in query:
            raise ValueError("otpauth URL has no secret")
        label = unquote(parsed.path.lstrip("/"))
        issuer, sep, account = label.partition(":")
        if not sep:
            issuer, account = "", label
        issuer = query.get("issuer", [issuer])[0]
        try:
            key = _b32decode(query["secret"][0])
            digits = int(query.get("digits", ["6"])[0])
            interval = int(query.get("period", ["30"])[0])
        except ValueError as err:
            raise ValueError(f"Malformed otpauth URL: {err}") from err
        algorithm = query.get("algorithm", ["SHA1"])[0]
        return cls(
            key, issuer, account,
            digits=digits, interval=interval, algorithm=algorithm,
        )

    def at(self, for_time: float) -> str:
        """Code for the time step containing ``for_time``."""
        return self._totp.generate(int(for_time)).decode("ascii")

    def now(self) -> str:
        return self.at(time.time())

    def validate(self, code: str, for_time: float | None = None, window: int = 1) -> bool:
        """Check ``code`` against the steps around ``for_time``.

        Args:
            code: Code typed by the user.
            for_time: Unix time to validate at; defaults to now.
            window: Number of steps accepted on each side of the current one.

        Returns:
            True if the code matches any step in the window.
        """
        if for_time is None:
            for_time = time.time()
        code = (code or "").strip()
        if len(code) != self.digits or not (code.isascii() and code.isdigit()):
            return False
        token = code.encode("ascii")
        for step in range(-window, window + 1):
            try:
                self._totp.verify(token, int(for_time) + step * self.interval)
            except InvalidToken:
                continue
            return True
        return False
