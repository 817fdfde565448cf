"""
Tests for ArchivalSweep.

Verifies:
- COMPLETED envelopes older than the retention window are archived
- The artifact is moved exactly once, and re-runs add nothing
- A move that happened before a failed status commit is repaired
- A missing artifact is reported as a failure and the envelope stays COMPLETED
"""

import pytest

from signflow_kernel.domain.statuses import AuditAction, DocumentStatus, EnvelopeStatus

from signflow_batch.services.archival_sweep import ArchivalSweep

ARTIFACT = "signatures/rendered.png"


@pytest.fixture
def completed_envelope(make_envelope, aggregator, fetch_envelope):
    envelope = make_envelope(signers=1)
    aggregator.sign(envelope.signers[0].signer_id, ARTIFACT)
    return fetch_envelope(envelope.envelope_id)


def _archived_rows(view):
    return [e for e in view.audit_entries if e.action == AuditAction.DOCUMENT_ARCHIVED]


class TestArchival:
    def test_archives_after_retention(
        self, completed_envelope, archival_sweep, artifact_root, clock, fetch_envelope, notifier,
    ):
        file_ref = completed_envelope.document.file_ref
        clock.advance(days=8)

        result = archival_sweep.run()

        assert (result.candidates, result.processed, result.failed) == (1, 1, 0)
        view = fetch_envelope(completed_envelope.envelope_id)
        assert view.status == EnvelopeStatus.ARCHIVED
        assert view.document.status == DocumentStatus.ARCHIVED
        assert view.document.archived_file_ref == f"archives/{file_ref}"
        assert not (artifact_root / file_ref).exists()
        assert (artifact_root / "archives" / file_ref).read_bytes().startswith(b"%PDF")

        [row] = _archived_rows(view)
        assert row.details == {"file_ref": file_ref, "archived_file_ref": f"archives/{file_ref}"}
        assert notifier.events[-1].kind == "envelope.archived"
        assert notifier.events[-1].details == {"archived_file_ref": f"archives/{file_ref}"}

    @pytest.mark.parametrize("age_days", [6, 7])
    def test_within_retention_is_untouched(self, completed_envelope, archival_sweep, clock, fetch_envelope, age_days):
        clock.advance(days=age_days)

        result = archival_sweep.run()

        assert result.candidates == 0
        assert fetch_envelope(completed_envelope.envelope_id).status == EnvelopeStatus.COMPLETED

    def test_retention_is_configurable(self, completed_envelope, runner, artifact_store, clock):
        clock.advance(hours=1)

        result = ArchivalSweep(runner, artifact_store, retention_days=0).run()

        assert result.processed == 1

    def test_negative_retention_rejected(self, runner, artifact_store):
        with pytest.raises(ValueError):
            ArchivalSweep(runner, artifact_store, retention_days=-1)

    def test_only_completed_envelopes_are_archived(
        self, make_envelope, aggregator, archival_sweep, clock, fetch_envelope,
    ):
        declined = make_envelope(signers=2)
        aggregator.decline(declined.signers[0].signer_id)
        in_progress = make_envelope(signers=2)
        clock.advance(days=30)

        assert archival_sweep.run().candidates == 0
        assert fetch_envelope(declined.envelope_id).status == EnvelopeStatus.DECLINED
        assert fetch_envelope(in_progress.envelope_id).status == EnvelopeStatus.IN_PROGRESS


class TestIdempotence:
    def test_rerun_is_noop(self, completed_envelope, archival_sweep, clock, fetch_envelope, captured_logs):
        clock.advance(days=8)
        archival_sweep.run()
        audit_before = fetch_envelope(completed_envelope.envelope_id).audit_entries

        again = archival_sweep.run()

        assert (again.candidates, again.processed) == (0, 0)
        assert fetch_envelope(completed_envelope.envelope_id).audit_entries == audit_before
        moves = [r for r in captured_logs() if r["message"] == "artifact_archived"]
        assert len(moves) == 1

    def test_process_after_archival_is_skipped(self, completed_envelope, archival_sweep, clock):
        clock.advance(days=8)
        archival_sweep.run()

        outcome = archival_sweep.process(
            completed_envelope.envelope_id, completed_envelope.document.document_id, clock.now(),
        )

        assert outcome.value == "skipped"

    def test_moved_artifact_with_uncommitted_status_is_repaired(
        self, completed_envelope, archival_sweep, artifact_store, clock, fetch_envelope, captured_logs,
    ):
        """A file moved by a run whose status commit never landed is not moved again."""
        file_ref = completed_envelope.document.file_ref
        artifact_store.archive(file_ref)
        clock.advance(days=8)

        result = archival_sweep.run()

        assert result.processed == 1
        view = fetch_envelope(completed_envelope.envelope_id)
        assert view.status == EnvelopeStatus.ARCHIVED
        assert view.document.archived_file_ref == f"archives/{file_ref}"
        assert len(_archived_rows(view)) == 1
        assert any(r["message"] == "artifact_already_archived" for r in captured_logs())


class TestFailures:
    def test_missing_artifact_is_a_failure(
        self, completed_envelope, archival_sweep, artifact_root, clock, fetch_envelope,
    ):
        (artifact_root / completed_envelope.document.file_ref).unlink()
        clock.advance(days=8)

        result = archival_sweep.run()

        assert not result.ok
        [failure] = result.failures
        assert failure.envelope_id == completed_envelope.envelope_id
        assert failure.code == "ARTIFACT_STORAGE_FAILURE"
        view = fetch_envelope(completed_envelope.envelope_id)
        assert view.status == EnvelopeStatus.COMPLETED
        assert _archived_rows(view) == []

    def test_failure_does_not_block_other_envelopes(
        self, make_envelope, aggregator, archival_sweep, artifact_root, clock, fetch_envelope,
    ):
        views = []
        for _ in range(2):
            envelope = make_envelope(signers=1)
            aggregator.sign(envelope.signers[0].signer_id, ARTIFACT)
            views.append(envelope)
        missing, present = views
        (artifact_root / missing.document.file_ref).unlink()
        clock.advance(days=8)

        result = archival_sweep.run()

        assert (result.processed, result.failed) == (1, 1)
        assert fetch_envelope(present.envelope_id).status == EnvelopeStatus.ARCHIVED
        assert fetch_envelope(missing.envelope_id).status == EnvelopeStatus.COMPLETED
