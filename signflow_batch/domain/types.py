"""
signflow_batch.domain.types -- Pure frozen dataclasses for the sweep system.

ZERO I/O.  Frozen dataclasses with enum fields and tuples for immutable
collections.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from uuid import UUID


class SweepKind(str, Enum):
    """The two reconciliation sweeps."""

    EXPIRATION = "expiration"
    ARCHIVAL = "archival"


class EnvelopeOutcome(str, Enum):
    """What a sweep did with one candidate envelope."""

    PROCESSED = "processed"  # Transitioned by this run
    SKIPPED = "skipped"  # No longer eligible once locked (already handled)


@dataclass(frozen=True)
class SweepSchedule:
    """Immutable snapshot of one sweep's schedule.

    ``next_run_at`` is None until the scheduler first evaluates it.
    """

    name: str
    kind: SweepKind
    cron_expression: str
    is_active: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None

    def with_run(self, ran_at: datetime, next_run_at: datetime) -> SweepSchedule:
        return replace(self, last_run_at=ran_at, next_run_at=next_run_at)


@dataclass(frozen=True)
class SweepFailure:
    """One envelope a sweep could not process."""

    envelope_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class SweepResult:
    """Summary of one sweep run.

    ``candidates`` counts envelopes selected before locking; every
    candidate ends up in exactly one of processed / skipped / failures,
    except those left untouched when the run was cancelled.
    """

    sweep: SweepKind
    started_at: datetime
    finished_at: datetime
    candidates: int
    processed: int
    skipped: int
    failures: tuple[SweepFailure, ...] = ()
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled
