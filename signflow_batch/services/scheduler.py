"""
SweepScheduler -- In-process polling scheduler for the reconciliation sweeps.

Contract:
    Polls its schedules on a configurable interval, evaluates
    ``should_fire()`` (pure), and runs due sweeps.  ``tick()`` is public so a
    test harness can advance a DeterministicClock and drive the scheduler
    without a thread.

Architecture: signflow_batch/services.  Uses signflow_batch.domain.schedule
    for pure evaluation and the sweep classes for execution.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Schedule evaluation is pure (should_fire / compute_next_run).
    - Graceful shutdown: ``stop()`` is passed through to the running sweep,
      which stops between envelopes.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import timedelta

from signflow_kernel.domain.clock import Clock, SystemClock
from signflow_kernel.logging_config import get_logger

from signflow_batch.domain.schedule import (
    compute_next_run,
    first_run_at,
    parse_cron,
    should_fire,
)
from signflow_batch.domain.types import SweepKind, SweepResult, SweepSchedule
from signflow_batch.services.sweep import ReconciliationSweep

logger = get_logger("batch.scheduler")


class SweepScheduler:
    """In-process polling scheduler for sweep schedules.

    Contract:
        - ``tick()`` evaluates all active schedules, runs due ones.
        - ``start()`` / ``stop()`` for background thread operation.
        - A failing sweep is logged and rescheduled for its next slot.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running two
          schedulers is safe because every sweep is idempotent, just wasteful.
        - Does NOT handle timezone conversions (expects UTC).
    """

    def __init__(
        self,
        sweeps: Mapping[SweepKind, ReconciliationSweep],
        schedules: Iterable[SweepSchedule],
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
    ):
        self._sweeps = dict(sweeps)
        self._schedules: dict[str, SweepSchedule] = {}
        for schedule in schedules:
            if schedule.kind not in self._sweeps:
                raise ValueError(f"No sweep registered for schedule {schedule.name!r} ({schedule.kind.value})")
            parse_cron(schedule.cron_expression)
            self._schedules[schedule.name] = schedule
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def schedules(self) -> tuple[SweepSchedule, ...]:
        return tuple(self._schedules.values())

    @property
    def tick_interval_seconds(self) -> float:
        return self._tick_interval

    def prime(self, lookback_seconds: float = 0) -> None:
        """Compute the first slot of every unprimed active schedule.

        With ``lookback_seconds`` the first slot may lie that far in the past,
        so a one-shot run fires the schedules whose slot passed since the
        previous invocation.  ``tick()`` primes with no lookback.
        """
        since = self._clock.now() - timedelta(seconds=lookback_seconds)
        for name, schedule in list(self._schedules.items()):
            if schedule.is_active and schedule.next_run_at is None:
                self._schedules[name] = replace(
                    schedule, next_run_at=first_run_at(schedule.cron_expression, since),
                )

    def tick(self) -> list[SweepResult]:
        """Evaluate and fire due schedules (public for testing).

        Returns the results of the sweeps that ran.
        """
        self.prime()
        now = self._clock.now()
        results: list[SweepResult] = []

        for name, schedule in list(self._schedules.items()):
            if self._stop_event.is_set():
                break

            if not should_fire(schedule, now):
                continue

            try:
                result = self._sweeps[schedule.kind].run(stop_event=self._stop_event)
                results.append(result)
            except Exception:
                logger.exception(
                    "scheduler_sweep_failed",
                    extra={"schedule": name, "sweep": schedule.kind.value},
                )
                result = None

            next_run = compute_next_run(schedule.cron_expression, now)
            self._schedules[name] = schedule.with_run(now, next_run)
            logger.info(
                "schedule_fired",
                extra={
                    "schedule": name,
                    "sweep": schedule.kind.value,
                    "processed": result.processed if result is not None else None,
                    "failed": result.failed if result is not None else None,
                    "next_run_at": str(next_run),
                },
            )

        return results

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop()`` is called; True if it was."""
        return self._stop_event.wait(timeout=timeout)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
