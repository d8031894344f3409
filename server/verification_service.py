"""
Verification Service Module

Turns a client score into a single-use signed token:

1. Validate the request; malformed requests touch no state.
2. Consume the nonce atomically; a reused nonce is rejected as a replay.
3. Re-apply the threshold server-side; the client's decision is never trusted.
4. Append an audit record, whatever the decision.
5. Issue a signed token on acceptance.

If durable storage goes away at runtime, the service switches to the
in-process ledger / audit log and reports itself as non-durable.
"""

import threading
import time
from dataclasses import dataclass
from typing import List, Optional
import logging

from pydantic import ValidationError

from server.audit_log import AuditLog, InMemoryAuditLog, create_audit_log
from server.database import make_engine
from server.nonce_ledger import InMemoryNonceLedger, NonceLedger, create_ledger
from server.request_validator import RequestValidator
from server.tokens import TokenSigner
from shared.config import Config, DEFAULT_SECRET
from shared.errors import MalformedRequestError, PersistenceUnavailableError, ReplayedNonceError
from shared.models import AuditRecord, VerifyRequest

logger = logging.getLogger(__name__)


@dataclass
class VerificationOutcome:
    """Result of a well-formed, non-replayed submission."""
    success: bool
    score: float
    token: Optional[str] = None
    error: Optional[str] = None


class VerificationService:
    """Server side of the verification protocol."""

    def __init__(
        self,
        ledger: NonceLedger,
        audit_log: AuditLog,
        signer: TokenSigner,
        threshold: float = 0.65,
        validator: Optional[RequestValidator] = None,
    ):
        self.ledger = ledger
        self.audit_log = audit_log
        self.signer = signer
        self.threshold = threshold
        self.validator = validator or RequestValidator()
        self._swap_lock = threading.Lock()

    @property
    def durable(self) -> bool:
        return self.ledger.durable and self.audit_log.durable

    def submit(
        self,
        score: Optional[float],
        nonce: Optional[str],
        identity: Optional[str],
        timestamp: Optional[float] = None,
    ) -> VerificationOutcome:
        """
        Run one submission through the protocol.

        Raises:
            MalformedRequestError: a required field is missing or out of range.
            ReplayedNonceError: the nonce was already consumed.
        """
        try:
            payload = VerifyRequest(score=score, nonce=nonce, identity=identity, timestamp=timestamp)
        except ValidationError as e:
            raise MalformedRequestError(f"Invalid request: {e}") from e
        is_valid, reason = self.validator.validate(payload)
        if not is_valid:
            logger.info(f"Rejected malformed request: {reason}")
            raise MalformedRequestError(reason)

        if not self._consume(payload.nonce):
            logger.warning(f"Replay rejected for {payload.identity}: nonce {payload.nonce}")
            raise ReplayedNonceError(payload.nonce)

        is_human = payload.score > self.threshold

        self._audit(AuditRecord(
            identity=payload.identity,
            score=payload.score,
            decision=is_human,
            timestamp=payload.timestamp if payload.timestamp is not None else time.time() * 1000.0,
            nonce=payload.nonce,
        ))

        if not is_human:
            logger.info(f"Below threshold for {payload.identity}: {payload.score:.4f}")
            return VerificationOutcome(success=False, score=payload.score, error="Bot detected")

        token = self.signer.issue(payload.identity, payload.score)
        logger.info(f"Token issued for {payload.identity}: score={payload.score:.4f}")
        return VerificationOutcome(success=True, score=payload.score, token=token)

    def _consume(self, nonce: str) -> bool:
        ledger = self.ledger
        try:
            return ledger.consume(nonce)
        except PersistenceUnavailableError as e:
            with self._swap_lock:
                # Concurrent failures must all land in the same replacement
                if self.ledger is ledger:
                    logger.warning(f"{e}; switching to in-memory nonce ledger (no cross-process or restart durability)")
                    self.ledger = InMemoryNonceLedger(
                        ttl=getattr(ledger, "ttl", Config.NONCE_TTL),
                        capacity=Config.MEMORY_LEDGER_CAPACITY,
                    )
                replacement = self.ledger
            return replacement.consume(nonce)

    def _audit(self, record: AuditRecord) -> None:
        audit_log = self.audit_log
        try:
            audit_log.append(record)
        except PersistenceUnavailableError as e:
            with self._swap_lock:
                if self.audit_log is audit_log:
                    logger.warning(f"{e}; switching to in-memory audit log")
                    self.audit_log = InMemoryAuditLog(capacity=Config.MEMORY_AUDIT_CAPACITY)
                replacement = self.audit_log
            replacement.append(record)

    def recent(self, identity: str, limit: int = 20) -> List[AuditRecord]:
        try:
            return self.audit_log.recent(identity, limit)
        except PersistenceUnavailableError as e:
            logger.warning(f"{e}; audit history unavailable")
            return []


def build_service(
    database_url: str = "",
    ledger_backend: str = "",
    secret: str = "",
    threshold: Optional[float] = None,
) -> VerificationService:
    """Wire a VerificationService from Config, with optional overrides."""
    backend = ledger_backend or Config.LEDGER_BACKEND
    engine = None
    if backend != "memory":
        engine = make_engine(database_url or Config.DATABASE_URL, echo=Config.SQL_ECHO)

    ledger = create_ledger(
        backend,
        engine=engine,
        ttl=Config.NONCE_TTL,
        capacity=Config.MEMORY_LEDGER_CAPACITY,
    )
    audit_log = create_audit_log(backend, engine=engine, capacity=Config.MEMORY_AUDIT_CAPACITY)
    signer = TokenSigner(secret or Config.SECRET, ttl=Config.TOKEN_TTL)

    if (secret or Config.SECRET) == DEFAULT_SECRET:
        logger.warning("ECHOCHECK_SECRET not set; tokens are signed with the default development key")

    return VerificationService(
        ledger=ledger,
        audit_log=audit_log,
        signer=signer,
        threshold=Config.THRESHOLD if threshold is None else threshold,
    )

