"""
signflow_batch.domain -- Pure types and schedule evaluation for the sweeps.

ZERO I/O.  All types are frozen dataclasses.
"""

from signflow_batch.domain.types import (
    EnvelopeOutcome,
    SweepFailure,
    SweepKind,
    SweepResult,
    SweepSchedule,
)

__all__ = [
    "EnvelopeOutcome",
    "SweepFailure",
    "SweepKind",
    "SweepResult",
    "SweepSchedule",
]
