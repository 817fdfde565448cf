"""
ReconciliationSweep -- per-envelope transaction loop shared by both sweeps.

Contract:
    ``run()`` selects candidate envelopes in one short read, then processes
    each in its own unit of work.  A candidate's failure is recorded as a
    SweepFailure and the loop moves on; it never aborts the sweep or touches
    any other envelope.

Invariants enforced:
    - Idempotence: every ``process()`` re-checks its predicate under the
      Document row lock and reports SKIPPED when the envelope has already
      been resolved (by a signer, a revoke, or an earlier sweep run).
    - Cancellation: the stop event is checked between envelopes only, so
      every cancellation point falls between two committed transactions.
    - All timestamps come from the runner's clock.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from signflow_kernel.exceptions import SignflowError
from signflow_kernel.logging_config import LogContext, get_logger
from signflow_kernel.services.unit_of_work import TransactionRunner

from signflow_batch.domain.types import (
    EnvelopeOutcome,
    SweepFailure,
    SweepKind,
    SweepResult,
)

logger = get_logger("batch.sweep")


class ReconciliationSweep(ABC):
    """Base class for the expiration and archival sweeps."""

    kind: SweepKind

    def __init__(self, runner: TransactionRunner, batch_size: int | None = None):
        self._runner = runner
        self._batch_size = batch_size

    @property
    def runner(self) -> TransactionRunner:
        return self._runner

    @abstractmethod
    def select_candidates(self, session: Session, as_of: datetime) -> list[tuple[UUID, UUID]]:
        """(envelope_id, document_id) pairs that look due as of ``as_of``."""

    @abstractmethod
    def process(self, envelope_id: UUID, document_id: UUID, as_of: datetime) -> EnvelopeOutcome:
        """Resolve one candidate in its own transaction."""

    def run(self, stop_event: threading.Event | None = None) -> SweepResult:
        """
        Run the sweep once.

        Returns:
            SweepResult with processed / skipped counts and per-envelope
            failures.  ``cancelled`` is True when ``stop_event`` was set
            before every candidate had been visited.
        """
        started_at = self._runner.clock.now()
        processed = 0
        skipped = 0
        failures: list[SweepFailure] = []
        cancelled = False

        with LogContext.bind(sweep_run_id=str(uuid4())):
            candidates = self._runner.read(
                lambda session: self.select_candidates(session, started_at)
            )
            logger.info(
                "sweep_started",
                extra={"sweep": self.kind.value, "candidates": len(candidates)},
            )

            for envelope_id, document_id in candidates:
                if stop_event is not None and stop_event.is_set():
                    cancelled = True
                    logger.warning(
                        "sweep_cancelled",
                        extra={"sweep": self.kind.value, "remaining": len(candidates) - processed - skipped - len(failures)},
                    )
                    break

                with LogContext.for_envelope(envelope_id, document_id):
                    try:
                        outcome = self.process(envelope_id, document_id, started_at)
                    except SignflowError as exc:
                        failures.append(SweepFailure(envelope_id, exc.code, str(exc)))
                        logger.warning(
                            "sweep_envelope_failed",
                            extra={"sweep": self.kind.value, "error_code": exc.code},
                        )
                        continue
                    except Exception as exc:
                        failures.append(SweepFailure(envelope_id, "UNHANDLED_EXCEPTION", str(exc)))
                        logger.exception(
                            "sweep_envelope_failed",
                            extra={"sweep": self.kind.value, "error_code": "UNHANDLED_EXCEPTION"},
                        )
                        continue

                if outcome == EnvelopeOutcome.PROCESSED:
                    processed += 1
                else:
                    skipped += 1

            result = SweepResult(
                sweep=self.kind,
                started_at=started_at,
                finished_at=self._runner.clock.now(),
                candidates=len(candidates),
                processed=processed,
                skipped=skipped,
                failures=tuple(failures),
                cancelled=cancelled,
            )
            logger.info(
                "sweep_finished",
                extra={
                    "sweep": self.kind.value,
                    "candidates": result.candidates,
                    "processed": result.processed,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "cancelled": result.cancelled,
                },
            )
        return result
