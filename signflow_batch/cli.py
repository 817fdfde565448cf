"""
signflow command line.

Usage:
    signflow [--config PATH] [--database-url URL] [--log-level LEVEL] <command>

Commands:
    init-db                     Create the schema in the configured database.
    sweep {expire,archive,all}  Run reconciliation sweeps once and print a
                                JSON summary.  Exit status 1 if any envelope
                                failed.
    scheduler [--once]          Run the sweep scheduler until interrupted
                                (SIGINT / SIGTERM).  With --once, run every
                                schedule whose slot fell within the last tick
                                interval and exit, for an external timer
                                (cron, systemd) invoking it at that interval.
    verify-audit                Validate every document's audit hash chain.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
from collections.abc import Sequence

from signflow_batch.domain.types import SweepKind, SweepResult

_SWEEP_CHOICES = {
    "expire": (SweepKind.EXPIRATION,),
    "archive": (SweepKind.ARCHIVAL,),
    "all": (SweepKind.EXPIRATION, SweepKind.ARCHIVAL),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signflow",
        description="Envelope lifecycle maintenance: schema setup, reconciliation sweeps, scheduler.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default=None, help="YAML override file (default: $SIGNFLOW_CONFIG).")
    parser.add_argument("--database-url", default=None, help="Override database.url.")
    parser.add_argument("--log-level", default=None, help="Override logging.level.")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables.")

    sweep = sub.add_parser("sweep", help="Run sweeps once.")
    sweep.add_argument("which", choices=sorted(_SWEEP_CHOICES), help="Which sweep to run.")

    scheduler = sub.add_parser("scheduler", help="Run the sweep scheduler.")
    scheduler.add_argument("--once", action="store_true", help="Run the schedules whose slot fell within the last tick interval, then exit.")
    scheduler.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Polling interval in seconds (default: sweeps.tick_interval_seconds).",
    )

    sub.add_parser("verify-audit", help="Validate all audit hash chains.")
    return parser


def _result_json(result: SweepResult) -> dict:
    return {
        "sweep": result.sweep.value,
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat(),
        "candidates": result.candidates,
        "processed": result.processed,
        "skipped": result.skipped,
        "cancelled": result.cancelled,
        "failures": [
            {"envelope_id": str(f.envelope_id), "code": f.code, "message": f.message}
            for f in result.failures
        ],
    }


def _print_results(results: list[SweepResult]) -> int:
    print(json.dumps([_result_json(r) for r in results], indent=2))
    return 0 if all(r.ok for r in results) else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Lazy imports so argument errors fail fast
    import yaml

    from signflow_config import get_active_config
    from signflow_kernel.logging_config import configure_logging

    environ = dict(os.environ)
    if args.database_url:
        environ["SIGNFLOW_DATABASE_URL"] = args.database_url
    if args.log_level:
        environ["SIGNFLOW_LOG_LEVEL"] = args.log_level

    try:
        config = get_active_config(args.config, environ=environ)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)

    if args.command == "init-db":
        from signflow_kernel.db.engine import create_tables, init_engine_from_url

        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            lock_timeout_ms=config.database.lock_timeout_ms,
        )
        create_tables()
        print(f"Schema ready at {config.database.url}")
        return 0

    from signflow_batch.orchestrator import SweepOrchestrator

    orchestrator = SweepOrchestrator.from_config(config)

    if args.command == "sweep":
        results = [orchestrator.run_sweep(kind) for kind in _SWEEP_CHOICES[args.which]]
        return _print_results(results)

    if args.command == "verify-audit":
        from signflow_kernel.exceptions import AuditChainBrokenError
        from signflow_kernel.services.auditor_service import AuditorService

        def _verify(session) -> int:
            return AuditorService(session, orchestrator.runner.clock).validate_all()

        try:
            count = orchestrator.runner.read(_verify)
        except AuditChainBrokenError as exc:
            print(f"BROKEN: {exc}", file=sys.stderr)
            return 1
        print(f"OK: {count} document audit chain(s) verified")
        return 0

    scheduler = orchestrator.create_scheduler(tick_interval_seconds=args.tick_interval)
    if args.once:
        # one tick for an external timer firing every tick interval
        scheduler.prime(lookback_seconds=scheduler.tick_interval_seconds)
        return _print_results(scheduler.tick())

    stop = threading.Event()

    def _handle_signal(signum, frame):
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    scheduler.start()
    try:
        while not stop.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
