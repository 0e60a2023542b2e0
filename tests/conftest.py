"""
Shared pytest fixtures for the lockbox test suite.

Every vault lives in ``tmp_path`` and reads time from a fixed, adjustable
clock so TOTP codes are deterministic.
"""
import pytest

from lockbox.vault import Vault

NOW = 1_700_000_010.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "test.lockbox"


@pytest.fixture
def vault(vault_path, clock):
    """A freshly opened, locked vault."""
    v = Vault.open(vault_path, clock=clock)
    yield v
    v.close()


@pytest.fixture
def initialized(vault):
    """Vault with namespace ``vault1`` owned by alice; yields (vault, secret)."""
    secret = vault.init("vault1", "alice", "secret123")
    return vault, secret


@pytest.fixture
def unlocked(initialized, clock):
    """Vault unlocked on ``vault1`` as alice."""
    vault, secret = initialized
    vault.unlock("vault1", "alice", "secret123", secret.at(clock()))
    return vault
