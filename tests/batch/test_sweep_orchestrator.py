"""
Tests for SweepOrchestrator wiring and the signflow command line.
"""

import json
import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from signflow_config import get_active_config
from signflow_kernel.db.engine import create_tables, reset_engine
from signflow_kernel.domain.clock import DeterministicClock
from signflow_kernel.domain.dtos import SignerSpec
from signflow_kernel.domain.statuses import EnvelopeStatus
from signflow_kernel.services.document_service import DocumentService
from signflow_kernel.services.envelope_service import EnvelopeService
from signflow_kernel.services.notifications import LoggingNotifier

from signflow_batch.cli import main
from signflow_batch.domain.types import SweepKind
from signflow_batch.orchestrator import DEFAULT_SCHEDULES, SweepOrchestrator
from signflow_batch.services.artifact_store import LocalArtifactStore

T0 = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'orchestrator.db'}"


@pytest.fixture
def batch_environ(tmp_path, sqlite_url):
    return {
        "SIGNFLOW_DATABASE_URL": sqlite_url,
        "SIGNFLOW_ARTIFACT_ROOT": str(tmp_path / "store"),
        "SIGNFLOW_ARCHIVE_RETENTION_DAYS": "3",
    }


@pytest.fixture
def orchestrator(batch_environ):
    clock = DeterministicClock(T0)
    config = get_active_config(environ=batch_environ)
    orch = SweepOrchestrator.from_config(config, clock=clock, notifier=LoggingNotifier())
    create_tables()
    yield orch
    reset_engine()


class TestFromConfig:
    def test_wires_config_values(self, orchestrator, tmp_path):
        store = orchestrator.store
        assert isinstance(store, LocalArtifactStore)
        assert store.root == tmp_path / "store"
        assert [s.name for s in orchestrator.schedules] == [s.name for s in DEFAULT_SCHEDULES]
        archival = orchestrator.sweep(SweepKind.ARCHIVAL)
        assert archival.cutoff(T0) == T0 - timedelta(days=3)

    def test_scheduler_shares_clock_and_schedules(self, orchestrator):
        scheduler = orchestrator.create_scheduler(tick_interval_seconds=5)
        assert {s.name for s in scheduler.schedules} == {s.name for s in orchestrator.schedules}

        results = scheduler.tick()  # T0 is 12:00, an hourly slot
        assert [r.sweep for r in results] == [SweepKind.EXPIRATION]
        assert results[0].started_at == T0

    def test_disabled_schedule_from_override(self, tmp_path, batch_environ):
        override = tmp_path / "override.yaml"
        override.write_text(
            "sweeps:\n"
            "  schedules:\n"
            "    - {name: expire-fast, kind: expiration, cron: '*/5 * * * *'}\n"
            "    - {name: archive-off, kind: archival, cron: '0 3 * * *', enabled: false}\n"
        )
        config = get_active_config(override, environ=batch_environ)
        try:
            orch = SweepOrchestrator.from_config(config, clock=DeterministicClock(T0))
            by_name = {s.name: s for s in orch.schedules}
            assert by_name["expire-fast"].cron_expression == "*/5 * * * *"
            assert not by_name["archive-off"].is_active
        finally:
            reset_engine()


class TestRunAll:
    def test_expiration_runs_before_archival(self, orchestrator):
        runner = orchestrator.runner
        org = uuid4()
        store_root = orchestrator.store.root
        (store_root / "documents").mkdir(parents=True)
        (store_root / "documents" / "a.pdf").write_bytes(b"%PDF")

        document = DocumentService(runner).upload_document(org, "Offer", "documents/a.pdf", "user:hr")
        envelopes = EnvelopeService(runner)
        envelope = envelopes.create_envelope(
            org, document.document_id, [SignerSpec("candidate@example.com")], "user:hr",
            expires_at=T0 + timedelta(hours=1),
        )
        envelopes.send_envelope(org, envelope.envelope_id, "user:hr")
        runner.clock.advance(hours=2)

        expiration, archival = orchestrator.run_all()

        assert expiration.sweep == SweepKind.EXPIRATION
        assert expiration.processed == 1
        assert archival.sweep == SweepKind.ARCHIVAL
        assert archival.candidates == 0
        assert envelopes.get_envelope(org, envelope.envelope_id).status == EnvelopeStatus.EXPIRED

    def test_stop_event_set_runs_nothing(self, orchestrator):
        stop = threading.Event()
        stop.set()
        assert orchestrator.run_all(stop_event=stop) == []


class TestCli:
    @pytest.fixture(autouse=True)
    def _isolated_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("SIGNFLOW_CONFIG", raising=False)
        monkeypatch.setenv("SIGNFLOW_ARTIFACT_ROOT", str(tmp_path / "cli-store"))
        yield
        reset_engine()

    def test_init_db_then_sweep(self, sqlite_url, capsys):
        assert main(["--database-url", sqlite_url, "init-db"]) == 0
        assert "Schema ready" in capsys.readouterr().out

        assert main(["--database-url", sqlite_url, "sweep", "all"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert [s["sweep"] for s in summary] == ["expiration", "archival"]
        assert all(s["candidates"] == 0 and s["failures"] == [] for s in summary)

    def test_verify_audit_on_empty_database(self, sqlite_url, capsys):
        main(["--database-url", sqlite_url, "init-db"])
        capsys.readouterr()

        assert main(["--database-url", sqlite_url, "verify-audit"]) == 0
        assert capsys.readouterr().out.startswith("OK: 0")

    def test_scheduler_once(self, sqlite_url, capsys):
        main(["--database-url", sqlite_url, "init-db"])
        capsys.readouterr()

        assert main(["--database-url", sqlite_url, "scheduler", "--once"]) == 0
        assert isinstance(json.loads(capsys.readouterr().out), list)

    def test_scheduler_once_runs_slots_within_the_tick_interval(self, sqlite_url, capsys):
        main(["--database-url", sqlite_url, "init-db"])
        capsys.readouterr()

        argv = ["--database-url", sqlite_url, "scheduler", "--once", "--tick-interval", "86400"]
        assert main(argv) == 0
        summary = json.loads(capsys.readouterr().out)
        assert [s["sweep"] for s in summary] == ["expiration", "archival"]

    def test_missing_override_file(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "missing.yaml"), "init-db"]) == 2
        assert "invalid configuration" in capsys.readouterr().err

    def test_bad_log_level(self, sqlite_url, capsys):
        assert main(["--database-url", sqlite_url, "--log-level", "CHATTY", "init-db"]) == 2

    def test_unknown_sweep_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["sweep", "everything"])
        assert exc_info.value.code == 2
