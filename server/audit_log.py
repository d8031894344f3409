"""
Audit Log Module

Append-only record of every verification attempt that passed validation
and replay checks, accepted or rejected. Records can be queried per
identity, newest first.

SqlAuditLog persists to the `verifications` table. InMemoryAuditLog keeps
records per identity in process memory; data is lost on restart and is
not shared between workers.
"""

import threading
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from server.database import VerificationRecord, init_db, make_session_factory
from shared.errors import PersistenceUnavailableError
from shared.models import AuditRecord

logger = logging.getLogger(__name__)


class AuditLog:
    """Abstract base class for audit logs."""

    name = "abstract"
    durable = False

    def append(self, record: AuditRecord) -> None:
        raise NotImplementedError

    def recent(self, identity: str, limit: int = 20) -> List[AuditRecord]:
        """Return up to `limit` records for `identity`, newest first."""
        raise NotImplementedError


class SqlAuditLog(AuditLog):
    """Audit log stored in the `verifications` table."""

    name = "sql"
    durable = True

    def __init__(self, engine: Engine):
        self._session_factory = make_session_factory(engine)

    def append(self, record: AuditRecord) -> None:
        db = self._session_factory()
        try:
            db.add(VerificationRecord(
                identity=record.identity,
                score=record.score,
                decision=record.decision,
                timestamp=record.timestamp,
                nonce=record.nonce,
            ))
            db.commit()
        except OperationalError as e:
            db.rollback()
            raise PersistenceUnavailableError(f"Audit log unavailable: {e}") from e
        finally:
            db.close()

    def recent(self, identity: str, limit: int = 20) -> List[AuditRecord]:
        db = self._session_factory()
        try:
            rows = (
                db.query(VerificationRecord)
                .filter(VerificationRecord.identity == identity)
                .order_by(VerificationRecord.timestamp.desc(), VerificationRecord.id.desc())
                .limit(limit)
                .all()
            )
            return [
                AuditRecord(
                    identity=row.identity,
                    score=row.score,
                    decision=row.decision,
                    timestamp=row.timestamp,
                    nonce=row.nonce,
                )
                for row in rows
            ]
        except OperationalError as e:
            raise PersistenceUnavailableError(f"Audit log unavailable: {e}") from e
        finally:
            db.close()


class InMemoryAuditLog(AuditLog):
    """
    In-memory audit log keyed by identity.
    Keeps at most `capacity` records per identity; once full, the oldest
    appended record is dropped for each new one.
    Note: Data is not persisted across server restarts.
    """

    name = "memory"
    durable = False

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: Dict[str, Deque[AuditRecord]] = defaultdict(lambda: deque(maxlen=self.capacity))
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records[record.identity].append(record)
        logger.debug(f"Audit record for {record.identity}: score={record.score} decision={record.decision}")

    def recent(self, identity: str, limit: int = 20) -> List[AuditRecord]:
        with self._lock:
            records = list(self._records.get(identity, []))
        # Newest first; among equal timestamps, the later append wins
        records.reverse()
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]


def create_audit_log(backend: str = "auto", engine: Optional[Engine] = None, capacity: int = 1000) -> AuditLog:
    """Build the audit log, following the same backend rules as the nonce ledger."""
    if backend == "memory":
        return InMemoryAuditLog(capacity=capacity)
    try:
        if engine is None:
            raise PersistenceUnavailableError("No database configured")
        init_db(engine)
        return SqlAuditLog(engine)
    except PersistenceUnavailableError as e:
        if backend == "sql":
            raise
        logger.warning(f"{e}; audit records will be kept in memory only")
        return InMemoryAuditLog(capacity=capacity)
