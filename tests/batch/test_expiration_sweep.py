"""
Tests for ExpirationSweep.

Verifies:
- Open envelopes past expires_at become EXPIRED with their PENDING signers
- Exactly one ENVELOPE_EXPIRED audit row, even across repeated runs
- Completed / declined envelopes are never candidates
- Cancellation stops between envelopes
- One envelope's failure does not stop the sweep
"""

import threading
from datetime import timedelta

from signflow_kernel.domain.statuses import (
    AuditAction,
    DocumentStatus,
    EnvelopeStatus,
    SignerStatus,
)
from signflow_kernel.exceptions import StorageFailureError
from signflow_kernel.services.auditor_service import SYSTEM_ACTOR

from signflow_batch.domain.types import EnvelopeOutcome, SweepKind
from signflow_batch.services.expiration_sweep import ExpirationSweep

ARTIFACT = "signatures/rendered.png"


def _expired_rows(view):
    return [e for e in view.audit_entries if e.action == AuditAction.ENVELOPE_EXPIRED]


class TestExpiration:
    def test_expires_open_envelope(self, make_envelope, expiration_sweep, clock, fetch_envelope, notifier):
        envelope = make_envelope(signers=2, expires_in=timedelta(hours=1))
        clock.advance(hours=2)

        result = expiration_sweep.run()

        assert result.sweep == SweepKind.EXPIRATION
        assert (result.candidates, result.processed, result.skipped, result.failed) == (1, 1, 0, 0)
        assert result.ok
        view = fetch_envelope(envelope.envelope_id)
        assert view.status == EnvelopeStatus.EXPIRED
        assert view.document.status == DocumentStatus.EXPIRED
        assert all(s.status == SignerStatus.EXPIRED for s in view.signers)
        [row] = _expired_rows(view)
        assert row.actor == SYSTEM_ACTOR
        assert notifier.kinds()[-1] == "envelope.expired"

    def test_only_pending_signers_expire(self, make_envelope, aggregator, expiration_sweep, clock, fetch_envelope):
        envelope = make_envelope(signers=2, expires_in=timedelta(hours=1))
        signed, pending = envelope.signers
        aggregator.sign(signed.signer_id, ARTIFACT)
        clock.advance(hours=1)

        expiration_sweep.run()

        view = fetch_envelope(envelope.envelope_id)
        statuses = {s.signer_id: s.status for s in view.signers}
        assert statuses == {signed.signer_id: SignerStatus.SIGNED, pending.signer_id: SignerStatus.EXPIRED}
        [row] = _expired_rows(view)
        assert row.details["expired_signer_ids"] == [str(pending.signer_id)]

    def test_unsent_envelope_expires(self, make_envelope, expiration_sweep, clock, fetch_envelope):
        envelope = make_envelope(expires_in=timedelta(minutes=5), send=False)
        clock.advance(minutes=5)

        expiration_sweep.run()

        view = fetch_envelope(envelope.envelope_id)
        assert view.status == EnvelopeStatus.EXPIRED
        assert view.document.status == DocumentStatus.EXPIRED

    def test_second_run_is_noop(self, make_envelope, expiration_sweep, clock, fetch_envelope, notifier):
        envelope = make_envelope(expires_in=timedelta(hours=1))
        clock.advance(days=1)
        expiration_sweep.run()
        audit_before = fetch_envelope(envelope.envelope_id).audit_entries
        events_before = len(notifier.events)

        again = expiration_sweep.run()

        assert (again.candidates, again.processed) == (0, 0)
        assert fetch_envelope(envelope.envelope_id).audit_entries == audit_before
        assert len(notifier.events) == events_before

    def test_process_skips_already_expired(self, make_envelope, expiration_sweep, clock):
        envelope = make_envelope(expires_in=timedelta(hours=1))
        clock.advance(hours=2)
        expiration_sweep.run()

        outcome = expiration_sweep.process(envelope.envelope_id, envelope.document.document_id, clock.now())

        assert outcome == EnvelopeOutcome.SKIPPED


class TestCandidates:
    def test_not_yet_expired_is_untouched(self, make_envelope, expiration_sweep, clock, fetch_envelope):
        envelope = make_envelope(expires_in=timedelta(hours=1))
        clock.advance(minutes=59)

        result = expiration_sweep.run()

        assert result.candidates == 0
        assert fetch_envelope(envelope.envelope_id).status == EnvelopeStatus.IN_PROGRESS

    def test_envelope_without_expiry_is_untouched(self, make_envelope, expiration_sweep, clock):
        make_envelope(expires_in=None)
        clock.advance(days=3650)
        assert expiration_sweep.run().candidates == 0

    def test_resolved_envelopes_are_not_candidates(self, make_envelope, aggregator, expiration_sweep, clock, fetch_envelope):
        completed = make_envelope(signers=1, expires_in=timedelta(hours=1))
        declined = make_envelope(signers=2, expires_in=timedelta(hours=1))
        aggregator.sign(completed.signers[0].signer_id, ARTIFACT)
        aggregator.decline(declined.signers[0].signer_id)
        clock.advance(hours=2)

        result = expiration_sweep.run()

        assert result.candidates == 0
        assert fetch_envelope(completed.envelope_id).status == EnvelopeStatus.COMPLETED
        assert fetch_envelope(declined.envelope_id).status == EnvelopeStatus.DECLINED

    def test_completed_after_selection_is_skipped(self, make_envelope, aggregator, runner, clock, fetch_envelope):
        """A signer who completes the envelope before the sweep reaches it wins."""
        envelope = make_envelope(signers=1, expires_in=timedelta(hours=1))

        class LateSweep(ExpirationSweep):
            def select_candidates(self, session, as_of):
                return [(envelope.envelope_id, envelope.document.document_id)]

        aggregator.sign(envelope.signers[0].signer_id, ARTIFACT)
        clock.advance(hours=2)

        result = LateSweep(runner).run()

        assert (result.candidates, result.processed, result.skipped) == (1, 0, 1)
        view = fetch_envelope(envelope.envelope_id)
        assert view.status == EnvelopeStatus.COMPLETED
        assert _expired_rows(view) == []

    def test_batch_size_limits_candidates(self, make_envelope, runner, clock):
        for _ in range(3):
            make_envelope(signers=1, expires_in=timedelta(hours=1))
        clock.advance(hours=2)

        sweep = ExpirationSweep(runner, batch_size=2)

        assert sweep.run().processed == 2
        assert sweep.run().processed == 1
        assert sweep.run().candidates == 0


class TestCancellationAndFailures:
    def test_stop_event_cancels_between_envelopes(self, make_envelope, runner, clock, captured_logs):
        for _ in range(3):
            make_envelope(signers=1, expires_in=timedelta(hours=1))
        clock.advance(hours=2)
        stop = threading.Event()

        class StoppingSweep(ExpirationSweep):
            def process(self, envelope_id, document_id, as_of):
                outcome = super().process(envelope_id, document_id, as_of)
                stop.set()
                return outcome

        result = StoppingSweep(runner).run(stop_event=stop)

        assert result.cancelled
        assert not result.ok
        assert (result.candidates, result.processed) == (3, 1)
        assert any(r["message"] == "sweep_cancelled" for r in captured_logs())

        rest = ExpirationSweep(runner).run()
        assert (rest.candidates, rest.processed) == (2, 2)

    def test_failure_is_isolated(self, make_envelope, runner, clock, fetch_envelope, captured_logs):
        broken = make_envelope(signers=1, expires_in=timedelta(hours=1))
        healthy = make_envelope(signers=1, expires_in=timedelta(hours=1))
        crashing = make_envelope(signers=1, expires_in=timedelta(hours=1))
        clock.advance(hours=2)

        class FlakySweep(ExpirationSweep):
            def process(self, envelope_id, document_id, as_of):
                if envelope_id == broken.envelope_id:
                    raise StorageFailureError("expire_envelope", "disk full")
                if envelope_id == crashing.envelope_id:
                    raise RuntimeError("boom")
                return super().process(envelope_id, document_id, as_of)

        result = FlakySweep(runner).run()

        assert result.processed == 1
        codes = {f.envelope_id: f.code for f in result.failures}
        assert codes == {
            broken.envelope_id: "STORAGE_FAILURE",
            crashing.envelope_id: "UNHANDLED_EXCEPTION",
        }
        assert fetch_envelope(healthy.envelope_id).status == EnvelopeStatus.EXPIRED
        assert fetch_envelope(broken.envelope_id).status == EnvelopeStatus.IN_PROGRESS

        failed = [r for r in captured_logs() if r["message"] == "sweep_envelope_failed"]
        assert {r["error_code"] for r in failed} == {"STORAGE_FAILURE", "UNHANDLED_EXCEPTION"}
        assert all("sweep_run_id" in r for r in failed)
