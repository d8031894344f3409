import pytest

from server.audit_log import create_audit_log
from server.database import make_engine
from server.nonce_ledger import create_ledger
from server.tokens import TokenSigner
from server.verification_service import VerificationService


class FakeClock:
    """Settable clock for TTL and expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine(tmp_path):
    return make_engine(f"sqlite:///{tmp_path / 'echocheck_test.db'}")


@pytest.fixture
def signer(clock):
    return TokenSigner("test-secret", ttl=600, clock=clock)


@pytest.fixture
def service(db_engine, signer):
    return VerificationService(
        ledger=create_ledger("sql", engine=db_engine, ttl=600),
        audit_log=create_audit_log("sql", engine=db_engine),
        signer=signer,
        threshold=0.65,
    )
