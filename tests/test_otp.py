"""
Tests for TOTPSecret: generation, otpauth URL round-trip and validation windows.
"""
import base64
from urllib.parse import urlparse, parse_qs

import pytest

from lockbox.vault.otp import SECRET_SIZE, TOTPSecret

T = 1_700_000_010

# RFC 6238 appendix B, SHA1 seed
RFC_KEY = b"12345678901234567890"


@pytest.fixture
def secret():
    return TOTPSecret.generate("lockbox", "vault1@vault")


class TestGeneration:

    def test_fresh_random_key(self, secret):
        other = TOTPSecret.generate("lockbox", "vault1@vault")
        assert len(secret.key) == SECRET_SIZE
        assert secret.key != other.key

    def test_base32_secret(self, secret):
        assert base64.b32decode(secret.secret) == secret.key

    def test_rfc6238_vector(self):
        totp = TOTPSecret(RFC_KEY, "lockbox", "test", digits=8)
        assert totp.at(59) == "94287082"
        assert totp.at(1111111109) == "07081804"

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError):
            TOTPSecret(RFC_KEY, "lockbox", "test", algorithm="MD5")


class TestSerialization:
    """otpauth:// URL form."""

    def test_url_fields(self, secret):
        url = secret.serialize()
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert query["issuer"] == ["lockbox"]
        assert query["digits"] == ["6"]
        assert query["period"] == ["30"]
        assert str(secret) == url

    def test_from_url_restores_secret(self, secret):
        restored = TOTPSecret.from_url(secret.serialize())
        assert restored == secret
        assert restored.issuer == "lockbox"
        assert restored.account_name == "vault1@vault"
        assert restored.at(T) == secret.at(T)

    def test_from_url_third_party(self):
        url = (
            "otpauth://totp/ACME%20Co:john.doe%40email.com?"
            "secret=GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ&issuer=ACME%20Co"
            "&algorithm=SHA1&digits=6&period=30"
        )
        totp = TOTPSecret.from_url(url)
        assert totp.issuer == "ACME Co"
        assert totp.account_name == "john.doe@email.com"
        assert totp.key == RFC_KEY

    @pytest.mark.parametrize("url", [
        "https://example.com/",
        "otpauth://hotp/x?secret=GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ",
        "otpauth://totp/lockbox:x?issuer=lockbox",
        "otpauth://totp/lockbox:x?secret=!!!notbase32",
        "otpauth://totp/lockbox:x?secret=GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ&digits=six",
    ])
    def test_malformed_urls(self, url):
        with pytest.raises(ValueError):
            TOTPSecret.from_url(url)


class TestValidation:
    """validate() with a one-step window."""

    def test_current_code(self, secret):
        assert secret.validate(secret.at(T), for_time=T) is True

    @pytest.mark.parametrize("offset", [-30, 30])
    def test_adjacent_steps_accepted(self, secret, offset):
        assert secret.validate(secret.at(T + offset), for_time=T) is True

    @pytest.mark.parametrize("offset", [-90, -60, 60, 90])
    def test_outside_window_rejected(self, offset):
        # codes of the RFC seed around T are all distinct
        pinned = TOTPSecret(RFC_KEY, "lockbox", "vault1@vault")
        code = pinned.at(T + offset)
        assert code not in {pinned.at(T - 30), pinned.at(T), pinned.at(T + 30)}
        assert pinned.validate(code, for_time=T) is False

    def test_zero_window(self):
        pinned = TOTPSecret(RFC_KEY, "lockbox", "vault1@vault")
        assert pinned.at(T - 30) == "921300"
        assert pinned.at(T) == "732303"
        assert pinned.validate("921300", for_time=T, window=0) is False
        assert pinned.validate("732303", for_time=T, window=0) is True

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 456", None])
    def test_malformed_codes(self, secret, code):
        assert secret.validate(code, for_time=T) is False

    def test_now(self, secret):
        assert secret.validate(secret.now()) is True
