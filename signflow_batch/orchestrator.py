"""
SweepOrchestrator -- DI container for the reconciliation sweeps.

Contract:
    Wires the TransactionRunner, artifact store, both sweeps and the
    scheduler from one SignflowConfig.  Single place where all batch
    dependencies are composed.

Architecture: signflow_batch (top-level).  This is the canonical entry point
    for running sweeps, whether from the CLI, a cron job or a test harness.

Invariants enforced:
    - Clock injection: every sweep and the scheduler share one Clock.
    - No kernel imports of signflow_batch (the orchestrator lives here).
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from signflow_kernel.domain.clock import Clock, SystemClock
from signflow_kernel.logging_config import get_logger
from signflow_kernel.services.notifications import LoggingNotifier, TransitionNotifier
from signflow_kernel.services.unit_of_work import TransactionRunner

from signflow_batch.domain.types import SweepKind, SweepResult, SweepSchedule
from signflow_batch.services.archival_sweep import DEFAULT_RETENTION_DAYS, ArchivalSweep
from signflow_batch.services.artifact_store import ArtifactStore, LocalArtifactStore
from signflow_batch.services.expiration_sweep import ExpirationSweep
from signflow_batch.services.scheduler import SweepScheduler
from signflow_batch.services.sweep import ReconciliationSweep

if TYPE_CHECKING:
    from signflow_config.schema import SignflowConfig

logger = get_logger("batch.orchestrator")

DEFAULT_SCHEDULES: tuple[SweepSchedule, ...] = (
    SweepSchedule("expire-envelopes", SweepKind.EXPIRATION, "0 * * * *"),
    SweepSchedule("archive-completed", SweepKind.ARCHIVAL, "0 2 * * *"),
)


class SweepOrchestrator:
    """DI container for the sweep system.

    Usage::

        orchestrator = SweepOrchestrator.from_config(get_active_config())
        orchestrator.run_all()
        scheduler = orchestrator.create_scheduler()
    """

    def __init__(
        self,
        runner: TransactionRunner,
        store: ArtifactStore,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        batch_size: int | None = None,
        schedules: tuple[SweepSchedule, ...] = DEFAULT_SCHEDULES,
        tick_interval_seconds: float = 60,
    ):
        self._runner = runner
        self._store = store
        self._sweeps: dict[SweepKind, ReconciliationSweep] = {
            SweepKind.EXPIRATION: ExpirationSweep(runner, batch_size=batch_size),
            SweepKind.ARCHIVAL: ArchivalSweep(
                runner, store, retention_days=retention_days, batch_size=batch_size,
            ),
        }
        self._schedules = schedules
        self._tick_interval = tick_interval_seconds

    @classmethod
    def from_config(
        cls,
        config: SignflowConfig,
        clock: Clock | None = None,
        notifier: TransitionNotifier | None = None,
    ) -> SweepOrchestrator:
        """Initialise the engine and build an orchestrator from ``config``.

        Args:
            config: Effective configuration from ``get_active_config()``.
            clock: Optional clock override (defaults to SystemClock).
            notifier: Post-commit transition notifier (defaults to
                LoggingNotifier).
        """
        from signflow_kernel.db.engine import get_session_factory, init_engine_from_url

        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
            lock_timeout_ms=config.database.lock_timeout_ms,
        )
        runner = TransactionRunner(
            get_session_factory(),
            clock=clock or SystemClock(),
            notifier=notifier or LoggingNotifier(),
            max_attempts=config.retry.max_attempts,
            backoff_base_seconds=config.retry.backoff_base_seconds,
            backoff_max_seconds=config.retry.backoff_max_seconds,
        )
        schedules = tuple(
            SweepSchedule(
                name=s.name,
                kind=SweepKind(s.kind),
                cron_expression=s.cron,
                is_active=s.enabled,
            )
            for s in config.sweeps.schedules
        )
        logger.info(
            "sweep_orchestrator_configured",
            extra={
                "config_checksum": config.checksum,
                "retention_days": config.sweeps.archive_retention_days,
                "schedules": [s.name for s in schedules],
            },
        )
        return cls(
            runner=runner,
            store=LocalArtifactStore(
                config.storage.artifact_root,
                archive_subdir=config.storage.archive_subdir,
            ),
            retention_days=config.sweeps.archive_retention_days,
            batch_size=config.sweeps.batch_size,
            schedules=schedules,
            tick_interval_seconds=config.sweeps.tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------------

    def sweep(self, kind: SweepKind) -> ReconciliationSweep:
        return self._sweeps[SweepKind(kind)]

    def run_sweep(
        self,
        kind: SweepKind,
        stop_event: threading.Event | None = None,
    ) -> SweepResult:
        return self.sweep(kind).run(stop_event=stop_event)

    def run_all(self, stop_event: threading.Event | None = None) -> list[SweepResult]:
        """Expiration first, then archival."""
        results = []
        for kind in (SweepKind.EXPIRATION, SweepKind.ARCHIVAL):
            if stop_event is not None and stop_event.is_set():
                break
            results.append(self.run_sweep(kind, stop_event=stop_event))
        return results

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(self, tick_interval_seconds: float | None = None) -> SweepScheduler:
        """Create a SweepScheduler over this orchestrator's sweeps and schedules."""
        return SweepScheduler(
            sweeps=self._sweeps,
            schedules=self._schedules,
            clock=self._runner.clock,
            tick_interval_seconds=(
                tick_interval_seconds if tick_interval_seconds is not None else self._tick_interval
            ),
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def runner(self) -> TransactionRunner:
        return self._runner

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def schedules(self) -> tuple[SweepSchedule, ...]:
        return self._schedules
