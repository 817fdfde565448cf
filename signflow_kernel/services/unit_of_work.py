"""
UnitOfWork and TransactionRunner -- the transaction boundary of the kernel.

Responsibility:
    ``TransactionRunner.run(operation, fn)`` opens a fresh session, hands
    ``fn`` a UnitOfWork (session + clock + auditor + lock helpers), commits,
    and only then publishes the TransitionEvents that ``fn`` emitted.  Every
    state-changing kernel operation goes through it.

Architecture position:
    Kernel > Services -- imperative shell.  Used by EnvelopeService,
    DocumentService, CompletionAggregator and the batch sweeps.

Invariants enforced:
    - Lock discipline: ``lock_document()`` takes the Document row lock
      (SELECT ... FOR UPDATE on PostgreSQL; SQLite transactions are already
      exclusive via BEGIN IMMEDIATE) before the envelope family is re-read
      with ``populate_existing``.  One lock per family, never two.
    - All-or-nothing: any exception rolls back the whole unit of work.
    - Events are published after commit only; a failed commit publishes
      nothing.

Failure modes:
    - Domain errors (SignflowError) roll back and propagate unchanged.
    - Lock timeout (55P03, SQLite "database is locked")  -> BusyError.
    - Serialization failure (40001), deadlock (40P01), stale envelope
      version, integrity race                          -> ConflictError.
      Both are retried with bounded exponential backoff before surfacing.
    - Any other driver error -> StorageFailureError (not retried).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from signflow_kernel.domain.clock import Clock, SystemClock
from signflow_kernel.domain.dtos import TransitionEvent
from signflow_kernel.exceptions import (
    BusyError,
    ConflictError,
    DocumentNotFoundError,
    EnvelopeNotFoundError,
    SignflowError,
    StorageFailureError,
)
from signflow_kernel.logging_config import get_logger
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.models.signer import Signer
from signflow_kernel.services.auditor_service import AuditorService
from signflow_kernel.services.notifications import NullNotifier, TransitionNotifier

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

LOCK_TIMEOUT_PGCODES = frozenset({"55P03"})
CONFLICT_PGCODES = frozenset({"40001", "40P01"})
SQLITE_BUSY_MESSAGES = ("database is locked", "database is busy")


class UnitOfWork:
    """
    One attempt of one transaction.

    ``now`` is read from the clock once when the attempt starts, so every
    timestamp written by the attempt is identical.
    """

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock
        self.now = clock.now()
        self.auditor = AuditorService(session, clock)
        self.events: list[TransitionEvent] = []

    def emit(self, event: TransitionEvent) -> None:
        """Queue ``event`` for publication after commit."""
        self.events.append(event)

    def lock_document(self, document_id: UUID) -> Document:
        """
        Lock the Document row that anchors an envelope family.

        Raises:
            DocumentNotFoundError: If no such document exists.
        """
        document = self.session.execute(
            select(Document)
            .where(Document.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def load_envelope(self, document_id: UUID) -> Envelope:
        """
        Re-read the envelope and its full signer set after the lock is held.

        Raises:
            EnvelopeNotFoundError: If the document has no envelope.
        """
        envelope = self.session.execute(
            select(Envelope)
            .where(Envelope.document_id == document_id)
            .options(selectinload(Envelope.signers).selectinload(Signer.fields))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if envelope is None:
            raise EnvelopeNotFoundError(f"document:{document_id}")
        return envelope

    def lock_envelope_family(self, document_id: UUID) -> tuple[Document, Envelope]:
        """Lock the document, then load its envelope.  The only lock order used."""
        document = self.lock_document(document_id)
        return document, self.load_envelope(document_id)


def classify_db_error(operation: str, exc: Exception, attempts: int) -> SignflowError:
    """Map a driver/ORM exception to the kernel's concurrency or storage errors."""
    if isinstance(exc, StaleDataError):
        return ConflictError(operation, attempts, "stale envelope version")

    if isinstance(exc, IntegrityError):
        return ConflictError(operation, attempts, "integrity race")

    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    message = str(orig if orig is not None else exc).lower()

    if pgcode in LOCK_TIMEOUT_PGCODES or any(m in message for m in SQLITE_BUSY_MESSAGES):
        return BusyError(operation, attempts, "lock timeout")
    if pgcode in CONFLICT_PGCODES:
        return ConflictError(operation, attempts, f"pgcode {pgcode}")
    if "deadlock" in message or "could not serialize" in message:
        return ConflictError(operation, attempts, "serialization failure")

    return StorageFailureError(operation, f"{type(exc).__name__}: {orig or exc}")


class TransactionRunner:
    """
    Runs callables inside retried, all-or-nothing transactions.

    Contract:
        ``fn`` must be safe to re-run from scratch: it receives a fresh
        session each attempt and must re-read everything it decides on.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        notifier: TransitionNotifier | None = None,
        max_attempts: int = 5,
        backoff_base_seconds: float = 0.05,
        backoff_max_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.notifier = notifier or NullNotifier()
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._sleep = sleep

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def _backoff(self, attempt: int) -> float:
        return min(self._backoff_max, self._backoff_base * (2 ** (attempt - 1)))

    def run(self, operation: str, fn: Callable[[UnitOfWork], T]) -> T:
        """
        Run ``fn`` in a transaction, retrying concurrency conflicts.

        Postconditions:
            - On return, everything ``fn`` wrote is committed and its
              events have been handed to the notifier.
            - On raise, nothing ``fn`` wrote is visible.

        Raises:
            SignflowError: Domain errors from ``fn`` unchanged;
                ConflictError/BusyError after the retry budget is spent;
                StorageFailureError for other database errors.
        """
        for attempt in range(1, self._max_attempts + 1):
            session = self._session_factory()
            uow = UnitOfWork(session, self.clock)
            try:
                result = fn(uow)
                session.commit()
            except SignflowError:
                session.rollback()
                raise
            except (DBAPIError, StaleDataError) as exc:
                session.rollback()
                error = classify_db_error(operation, exc, attempt)
                if isinstance(error, ConflictError) and attempt < self._max_attempts:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "transaction_conflict_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "max_attempts": self._max_attempts,
                            "error_code": error.code,
                            "delay_seconds": delay,
                        },
                    )
                    self._sleep(delay)
                    continue
                logger.error(
                    "transaction_failed",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "error_code": error.code,
                    },
                )
                raise error from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            logger.debug(
                "transaction_committed",
                extra={"operation": operation, "attempt": attempt},
            )
            self._publish(uow.events)
            return result

        # The loop always returns or raises on its final attempt.
        raise ConflictError(operation, self._max_attempts)

    def read(self, fn: Callable[[Session], T]) -> T:
        """Run a read-only callable in its own short transaction."""
        session = self._session_factory()
        try:
            return fn(session)
        finally:
            session.rollback()
            session.close()

    def _publish(self, events: list[TransitionEvent]) -> None:
        for event in events:
            try:
                self.notifier.notify(event)
            except Exception:
                logger.exception(
                    "transition_notification_failed",
                    extra={"kind": event.kind, "envelope_id": str(event.envelope_id)},
                )
