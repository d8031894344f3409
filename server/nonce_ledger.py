"""
Nonce Ledger Module

Exactly-once consumption of submission nonces, with TTL-based expiry.

Two implementations share one interface:
- SqlNonceLedger: durable; the nonce is the table's primary key, so the
  check-and-insert is a single unique-key insert.
- InMemoryNonceLedger: bounded, lock-protected cache for a single process.
  It provides NO cross-process or restart durability: a nonce consumed
  before a restart, or by another worker, can be consumed again.

Entries expire on their own; callers never unlock or delete a nonce.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from server.database import NonceRecord, init_db, make_session_factory
from shared.errors import PersistenceUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class NonceLedger:
    """Abstract base class for nonce ledgers."""

    name = "abstract"
    durable = False

    def consume(self, nonce: str) -> bool:
        """
        Atomically record `nonce` as used.

        Returns:
            True if this call consumed the nonce, False if it was already used
            and has not yet expired.
        """
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class SqlNonceLedger(NonceLedger):
    """Durable ledger backed by the `nonces` table."""

    name = "sql"
    durable = True

    def __init__(self, session_factory: sessionmaker, ttl: float = 600.0, clock: Clock = time.time):
        self._session_factory = session_factory
        self.ttl = ttl
        self._clock = clock

    def consume(self, nonce: str) -> bool:
        now = self._clock()
        db = self._session_factory()
        try:
            # Expired rows are garbage; dropping them also frees their nonces
            db.query(NonceRecord).filter(NonceRecord.expires_at <= now).delete(synchronize_session=False)
            db.add(NonceRecord(nonce=nonce, created_at=now, expires_at=now + self.ttl))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        except OperationalError as e:
            db.rollback()
            raise PersistenceUnavailableError(f"Nonce ledger unavailable: {e}") from e
        finally:
            db.close()

    def __len__(self) -> int:
        db = self._session_factory()
        try:
            return db.query(NonceRecord).filter(NonceRecord.expires_at > self._clock()).count()
        finally:
            db.close()


class InMemoryNonceLedger(NonceLedger):
    """
    Single-process, time-boxed ledger.
    Nonces are kept in insertion order; with a fixed TTL that is also expiry
    order, so expired entries are always at the front.
    """

    name = "memory"
    durable = False

    def __init__(self, ttl: float = 600.0, capacity: int = 100000, clock: Clock = time.time):
        self.ttl = ttl
        self.capacity = capacity
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        while self._entries:
            nonce, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[nonce]

    def consume(self, nonce: str) -> bool:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            if nonce in self._entries:
                return False
            if len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.warning(f"Memory nonce ledger full ({self.capacity}), evicted {evicted} before expiry")
            self._entries[nonce] = now + self.ttl
            return True

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)


def create_ledger(
    backend: str = "auto",
    engine: Optional[Engine] = None,
    ttl: float = 600.0,
    capacity: int = 100000,
) -> NonceLedger:
    """
    Build the configured ledger.

    backend:
        "memory" – in-process ledger only.
        "sql"    – durable ledger; raises if the database is unavailable.
        "auto"   – durable ledger, or the in-process one if the database
                   is unavailable (logged as a reduced guarantee).
    """
    if backend == "memory":
        logger.warning("Using in-memory nonce ledger: no cross-process or restart durability")
        return InMemoryNonceLedger(ttl=ttl, capacity=capacity)

    if backend not in ("sql", "auto"):
        raise ValueError(f"Unknown ledger backend: {backend}")

    try:
        if engine is None:
            raise PersistenceUnavailableError("No database configured")
        init_db(engine)
        logger.info("Using durable SQL nonce ledger")
        return SqlNonceLedger(make_session_factory(engine), ttl=ttl)
    except PersistenceUnavailableError as e:
        if backend == "sql":
            raise
        logger.warning(f"{e}; falling back to in-memory nonce ledger (no cross-process or restart durability)")
        return InMemoryNonceLedger(ttl=ttl, capacity=capacity)
