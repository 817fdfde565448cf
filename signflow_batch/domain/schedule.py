"""
Pure schedule evaluation functions.

Contract:
    ``should_fire(schedule, as_of)`` and ``compute_next_run()`` are PURE --
    no I/O, no side effects.  All timestamps come from the caller, so a test
    harness can drive the scheduler with a DeterministicClock.

Architecture: signflow_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from signflow_batch.domain.types import SweepSchedule


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, lists, ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Raises:
        ValueError: If the field is syntactically invalid or values out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()

        if "/" in part:
            range_part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

            if range_part == "*":
                start, end = min_val, max_val
            elif "-" in range_part:
                s, e = range_part.split("-", 1)
                start, end = int(s), int(e)
            else:
                start = int(range_part)
                end = max_val

            for v in range(start, end + 1, step):
                if min_val <= v <= max_val:
                    values.add(v)

        elif part == "*":
            values.update(range(min_val, max_val + 1))

        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
            if start < min_val or end > max_val:
                raise ValueError(f"Range {start}-{end} outside [{min_val}, {max_val}]")
            values.update(range(start, end + 1))

        else:
            v = int(part)
            if v < min_val or v > max_val:
                raise ValueError(
                    f"Value {v} outside range [{min_val}, {max_val}]"
                )
            values.add(v)

    if not values:
        raise ValueError(f"Cron field '{field_str}' matches nothing")
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Format: ``minute hour day_of_month month day_of_week``

    Raises:
        ValueError: If expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    return CronSpec(
        minutes=_parse_cron_field(parts[0], 0, 59),
        hours=_parse_cron_field(parts[1], 0, 23),
        days_of_month=_parse_cron_field(parts[2], 1, 31),
        months=_parse_cron_field(parts[3], 1, 12),
        days_of_week=_parse_cron_field(parts[4], 0, 6),
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a datetime matches a cron spec.

    Cron convention: 0=Sunday, 1=Monday, ..., 6=Saturday.
    Python datetime.weekday(): 0=Monday, ..., 6=Sunday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


# =============================================================================
# Schedule evaluation (pure)
# =============================================================================


def should_fire(schedule: SweepSchedule, as_of: datetime) -> bool:
    """Determine if a schedule should fire at the given time.

    Rules:
        - Inactive schedules never fire.
        - A schedule with no ``next_run_at`` has not been primed; it does
          not fire until the scheduler computes its first slot.
        - Otherwise it fires once ``as_of >= next_run_at``.  Missed slots
          collapse into one run.
    """
    if not schedule.is_active:
        return False
    if schedule.next_run_at is None:
        return False
    return as_of >= schedule.next_run_at


def compute_next_run(cron_expression: str, after: datetime) -> datetime:
    """First cron slot strictly after ``after``.

    Raises:
        ValueError: Malformed expression, or no slot within 366 days.
    """
    return _next_cron_match(parse_cron(cron_expression), after)


def first_run_at(cron_expression: str, now: datetime) -> datetime:
    """First cron slot at or after the start of ``now``'s minute."""
    return _next_cron_match(parse_cron(cron_expression), now - timedelta(minutes=1))


def _next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """Find the next datetime after ``after`` that matches the cron spec.

    Scans minute-by-minute up to 366 days (bounded iteration).

    Raises:
        ValueError: If no match found within 366 days.
    """
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    max_iterations = 366 * 24 * 60

    for _ in range(max_iterations):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise ValueError(
        f"No cron match found within 366 days after {after}"
    )
