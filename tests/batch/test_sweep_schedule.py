"""
Tests for signflow_batch.domain.schedule.

Validates pure schedule evaluation: cron parsing, should_fire(),
compute_next_run(), first_run_at() and edge cases.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from signflow_batch.domain.schedule import (
    CronSpec,
    _parse_cron_field,
    compute_next_run,
    first_run_at,
    matches_cron,
    parse_cron,
    should_fire,
)
from signflow_batch.domain.types import SweepKind, SweepResult, SweepSchedule


def _dt(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Cron parsing
# =============================================================================


class TestCronSpec:
    def test_frozen(self):
        spec = CronSpec()
        with pytest.raises(FrozenInstanceError):
            spec.minutes = frozenset()  # type: ignore[misc]


class TestParseCronField:
    def test_wildcard(self):
        assert _parse_cron_field("*", 0, 59) == frozenset(range(60))

    def test_step(self):
        assert _parse_cron_field("*/15", 0, 59) == frozenset({0, 15, 30, 45})

    def test_range_with_step(self):
        assert _parse_cron_field("1-10/3", 0, 59) == frozenset({1, 4, 7, 10})

    def test_comma_separated(self):
        assert _parse_cron_field("1,5,10", 0, 59) == frozenset({1, 5, 10})

    def test_value_out_of_range(self):
        with pytest.raises(ValueError, match="outside range"):
            _parse_cron_field("60", 0, 59)

    def test_reversed_range(self):
        with pytest.raises(ValueError, match="start > end"):
            _parse_cron_field("10-5", 0, 59)

    def test_zero_step(self):
        with pytest.raises(ValueError, match="positive"):
            _parse_cron_field("*/0", 0, 59)


class TestParseCron:
    def test_hourly(self):
        spec = parse_cron("0 * * * *")
        assert spec.minutes == frozenset({0})
        assert spec.hours == frozenset(range(24))

    def test_wrong_field_count(self):
        with pytest.raises(ValueError, match="5 fields"):
            parse_cron("0 2 * *")

    def test_matches_sunday_as_zero(self):
        spec = parse_cron("0 2 * * 0")
        assert matches_cron(spec, _dt(2024, 1, 7, 2, 0))  # Sunday
        assert not matches_cron(spec, _dt(2024, 1, 8, 2, 0))  # Monday


# =============================================================================
# Evaluation
# =============================================================================


def _schedule(**overrides) -> SweepSchedule:
    values = dict(name="expire", kind=SweepKind.EXPIRATION, cron_expression="0 * * * *")
    values.update(overrides)
    return SweepSchedule(**values)


class TestShouldFire:
    def test_inactive_never_fires(self):
        schedule = _schedule(is_active=False, next_run_at=_dt(2024, 1, 1))
        assert not should_fire(schedule, _dt(2025, 1, 1))

    def test_unprimed_does_not_fire(self):
        assert not should_fire(_schedule(), _dt(2025, 1, 1))

    def test_fires_at_next_run(self):
        schedule = _schedule(next_run_at=_dt(2024, 1, 1, 13, 0))
        assert not should_fire(schedule, _dt(2024, 1, 1, 12, 59, 59))
        assert should_fire(schedule, _dt(2024, 1, 1, 13, 0))
        assert should_fire(schedule, _dt(2024, 1, 3))

    def test_with_run_records_timestamps(self):
        schedule = _schedule(next_run_at=_dt(2024, 1, 1, 13))
        ran = schedule.with_run(_dt(2024, 1, 1, 13, 0, 5), _dt(2024, 1, 1, 14))
        assert ran.last_run_at == _dt(2024, 1, 1, 13, 0, 5)
        assert ran.next_run_at == _dt(2024, 1, 1, 14)
        assert schedule.last_run_at is None


class TestComputeNextRun:
    def test_hourly_is_strictly_after(self):
        assert compute_next_run("0 * * * *", _dt(2024, 1, 1, 13, 0)) == _dt(2024, 1, 1, 14, 0)

    def test_daily_archival_slot(self):
        assert compute_next_run("0 2 * * *", _dt(2024, 1, 1, 12, 0)) == _dt(2024, 1, 2, 2, 0)

    def test_seconds_are_truncated(self):
        assert compute_next_run("*/5 * * * *", _dt(2024, 1, 1, 12, 3, 59)) == _dt(2024, 1, 1, 12, 5)

    def test_impossible_date_raises(self):
        with pytest.raises(ValueError, match="No cron match"):
            compute_next_run("0 0 31 2 *", _dt(2024, 1, 1))

    def test_first_run_includes_current_minute(self):
        assert first_run_at("0 2 * * *", _dt(2024, 1, 1, 2, 0, 30)) == _dt(2024, 1, 1, 2, 0)
        assert first_run_at("0 2 * * *", _dt(2024, 1, 1, 2, 1)) == _dt(2024, 1, 2, 2, 0)


class TestSweepResult:
    def test_ok_requires_no_failures_and_no_cancel(self):
        base = dict(
            sweep=SweepKind.EXPIRATION,
            started_at=_dt(2024, 1, 1),
            finished_at=_dt(2024, 1, 1) + timedelta(seconds=1),
            candidates=0,
            processed=0,
            skipped=0,
        )
        assert SweepResult(**base).ok
        assert not SweepResult(**base, cancelled=True).ok
