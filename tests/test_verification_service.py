import threading

import pytest

from server.audit_log import InMemoryAuditLog
from server.nonce_ledger import InMemoryNonceLedger, NonceLedger
from server.request_validator import RequestValidator
from server.verification_service import VerificationService, build_service
from shared.errors import (
    MalformedRequestError,
    PersistenceUnavailableError,
    ReplayedNonceError,
    TokenExpiredError,
)


class UnavailableLedger(NonceLedger):
    name = "sql"
    durable = True

    def consume(self, nonce):
        raise PersistenceUnavailableError("Nonce ledger unavailable: disk I/O error")

    def __len__(self):
        return 0


def test_accepted_submission_returns_token(service):
    outcome = service.submit(score=0.92, nonce="n-1", identity="site-a", timestamp=1000.0)

    assert outcome.success is True
    assert outcome.error is None
    claims = service.signer.verify(outcome.token)
    assert claims.identity == "site-a"
    assert claims.is_human is True
    assert claims.score == pytest.approx(0.92)
    assert claims.exp - claims.iat == 600


def test_below_threshold_is_logged_without_token(service):
    outcome = service.submit(score=0.3, nonce="n-1", identity="site-a", timestamp=1000.0)

    assert outcome.success is False
    assert outcome.token is None
    assert outcome.error == "Bot detected"

    records = service.recent("site-a")
    assert len(records) == 1
    assert records[0].decision is False
    assert records[0].score == pytest.approx(0.3)


def test_threshold_is_strict(service):
    outcome = service.submit(score=0.65, nonce="n-1", identity="site-a")
    assert outcome.success is False


@pytest.mark.parametrize("fields", [
    {"score": 0.9, "nonce": "n-1", "identity": None},
    {"score": 0.9, "nonce": "n-1", "identity": "   "},
    {"score": 0.9, "nonce": None, "identity": "site-a"},
    {"score": None, "nonce": "n-1", "identity": "site-a"},
    {"score": 1.5, "nonce": "n-1", "identity": "site-a"},
    {"score": float("nan"), "nonce": "n-1", "identity": "site-a"},
])
def test_malformed_request_touches_no_state(service, fields):
    with pytest.raises(MalformedRequestError):
        service.submit(**fields)

    assert len(service.ledger) == 0
    assert service.recent("site-a") == []

    # The nonce was not burned by the rejected request
    assert service.submit(score=0.9, nonce="n-1", identity="site-a").success


def test_zero_score_is_present(service):
    outcome = service.submit(score=0.0, nonce="n-1", identity="site-a")
    assert outcome.success is False
    assert outcome.error == "Bot detected"


def test_replay_rejected_regardless_of_score(service):
    service.submit(score=0.2, nonce="n-1", identity="site-a")

    with pytest.raises(ReplayedNonceError) as excinfo:
        service.submit(score=0.99, nonce="n-1", identity="site-a")
    assert excinfo.value.nonce == "n-1"
    assert str(excinfo.value) == "Nonce already used"

    # Only the first attempt is audited
    assert len(service.recent("site-a")) == 1


def test_replay_across_identities(service):
    service.submit(score=0.9, nonce="n-1", identity="site-a")
    with pytest.raises(ReplayedNonceError):
        service.submit(score=0.9, nonce="n-1", identity="site-b")


def test_token_expires(service, clock):
    token = service.submit(score=0.9, nonce="n-1", identity="site-a").token

    clock.advance(599)
    assert service.signer.verify(token).identity == "site-a"

    clock.advance(1)
    with pytest.raises(TokenExpiredError):
        service.signer.verify(token)


def test_concurrent_submissions_single_token(service):
    outcomes = []
    replays = []
    lock = threading.Lock()
    barrier = threading.Barrier(6)

    def worker():
        barrier.wait()
        try:
            outcome = service.submit(score=0.9, nonce="shared", identity="site-a")
            with lock:
                outcomes.append(outcome)
        except ReplayedNonceError:
            with lock:
                replays.append(1)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(outcomes) == 1
    assert outcomes[0].success
    assert len(replays) == 5


def test_recent_is_newest_first(service):
    for i, ts in enumerate([1000.0, 3000.0, 2000.0]):
        service.submit(score=0.9, nonce=f"n-{i}", identity="site-a", timestamp=ts)
    service.submit(score=0.9, nonce="other", identity="site-b", timestamp=5000.0)

    records = service.recent("site-a", limit=2)
    assert [r.timestamp for r in records] == [3000.0, 2000.0]


def test_persistence_failure_switches_to_memory(signer):
    service = VerificationService(
        ledger=UnavailableLedger(),
        audit_log=InMemoryAuditLog(),
        signer=signer,
    )
    assert service.durable is False  # memory audit log

    assert service.submit(score=0.9, nonce="n-1", identity="site-a").success
    assert isinstance(service.ledger, InMemoryNonceLedger)
    with pytest.raises(ReplayedNonceError):
        service.submit(score=0.9, nonce="n-1", identity="site-a")


class FailingTogetherLedger(UnavailableLedger):
    """Fails only once every caller has reached it."""

    def __init__(self, parties):
        self.barrier = threading.Barrier(parties)

    def consume(self, nonce):
        self.barrier.wait(timeout=10)
        raise PersistenceUnavailableError("Nonce ledger unavailable: disk I/O error")


class FailingTogetherAuditLog(InMemoryAuditLog):
    durable = True

    def __init__(self, parties):
        super().__init__()
        self.barrier = threading.Barrier(parties)

    def append(self, record):
        self.barrier.wait(timeout=10)
        raise PersistenceUnavailableError("Audit log unavailable: disk I/O error")


def run_together(target, count):
    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)


def test_simultaneous_ledger_failures_share_one_replacement(signer):
    service = VerificationService(
        ledger=FailingTogetherLedger(parties=2),
        audit_log=InMemoryAuditLog(),
        signer=signer,
    )
    wins = []
    replays = []
    lock = threading.Lock()

    def worker(i):
        try:
            service.submit(score=0.9, nonce="same", identity="site-a")
            with lock:
                wins.append(i)
        except ReplayedNonceError:
            with lock:
                replays.append(i)

    run_together(worker, 2)

    assert len(wins) == 1
    assert len(replays) == 1
    assert isinstance(service.ledger, InMemoryNonceLedger)


def test_simultaneous_audit_failures_keep_every_record(signer):
    service = VerificationService(
        ledger=InMemoryNonceLedger(),
        audit_log=FailingTogetherAuditLog(parties=2),
        signer=signer,
    )

    def worker(i):
        service.submit(score=0.9, nonce=f"n-{i}", identity="site-a", timestamp=1000.0 + i)

    run_together(worker, 2)

    assert sorted(r.nonce for r in service.recent("site-a")) == ["n-0", "n-1"]


def test_durable_with_sql_storage(service):
    assert service.durable is True


def test_custom_validator_is_used(signer):
    class StrictValidator(RequestValidator):
        def __init__(self):
            super().__init__()
            self.max_identity_length = 3

    service = VerificationService(
        ledger=InMemoryNonceLedger(),
        audit_log=InMemoryAuditLog(),
        signer=signer,
        validator=StrictValidator(),
    )
    with pytest.raises(MalformedRequestError):
        service.submit(score=0.9, nonce="n-1", identity="site-a")


def test_build_service_memory_backend():
    service = build_service(ledger_backend="memory", secret="s3cret", threshold=0.5)

    assert service.ledger.name == "memory"
    assert service.audit_log.name == "memory"
    assert service.durable is False
    assert service.threshold == 0.5
    assert service.submit(score=0.6, nonce="n-1", identity="site-a").success


def test_build_service_sql_backend(tmp_path):
    service = build_service(
        database_url=f"sqlite:///{tmp_path / 'svc.db'}",
        ledger_backend="sql",
        secret="s3cret",
    )
    assert service.ledger.name == "sql"
    assert service.durable is True
