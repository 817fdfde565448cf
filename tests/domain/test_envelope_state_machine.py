"""
Tests for the State Machine Core (signflow_kernel.domain.state_machine).

Invariants tested:
- COMPLETED iff every signer SIGNED
- Any DECLINED signer -> DECLINED, without waiting for the rest
- Terminal statuses other than COMPLETED are absorbing
- Expiry is signalled only for open envelopes, at expires_at <= now
- Document status mirrors envelope status
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from signflow_kernel.domain.state_machine import (
    derive_envelope_status,
    document_status_for,
    is_expired,
    is_terminal,
)
from signflow_kernel.domain.statuses import (
    OPEN_ENVELOPE_STATUSES,
    TERMINAL_ENVELOPE_STATUSES,
    DocumentStatus,
    EnvelopeStatus,
    SignerStatus,
)

NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)
S = SignerStatus
E = EnvelopeStatus

signer_sets = st.lists(st.sampled_from(list(SignerStatus)), min_size=1, max_size=12)
open_statuses = st.sampled_from(sorted(OPEN_ENVELOPE_STATUSES, key=lambda s: s.value))


class TestDeriveEnvelopeStatus:
    def test_all_signed_completes(self):
        assert derive_envelope_status([S.SIGNED, S.SIGNED], NOW, None, E.IN_PROGRESS) == E.COMPLETED

    def test_single_signer_sign_completes_from_pending(self):
        assert derive_envelope_status([S.SIGNED], NOW, None, E.PENDING) == E.COMPLETED

    def test_partial_signing_is_in_progress(self):
        assert derive_envelope_status([S.SIGNED, S.PENDING], NOW, None, E.PENDING) == E.IN_PROGRESS

    def test_untouched_unsent_envelope_stays_pending(self):
        assert derive_envelope_status([S.PENDING, S.PENDING], NOW, None, E.PENDING) == E.PENDING

    def test_sent_envelope_stays_in_progress(self):
        assert derive_envelope_status([S.PENDING], NOW, None, E.IN_PROGRESS) == E.IN_PROGRESS

    def test_decline_does_not_wait_for_other_signers(self):
        statuses = [S.DECLINED, S.PENDING, S.PENDING]
        assert derive_envelope_status(statuses, NOW, None, E.IN_PROGRESS) == E.DECLINED

    def test_decline_wins_over_partial_signatures(self):
        statuses = [S.SIGNED, S.DECLINED]
        assert derive_envelope_status(statuses, NOW, None, E.IN_PROGRESS) == E.DECLINED

    def test_expired_open_envelope_signals_expiry(self):
        past = NOW - timedelta(seconds=1)
        assert derive_envelope_status([S.PENDING], NOW, past, E.IN_PROGRESS) == E.EXPIRED

    def test_expiry_boundary_is_inclusive(self):
        assert derive_envelope_status([S.PENDING], NOW, NOW, E.PENDING) == E.EXPIRED

    def test_future_expiry_does_not_signal(self):
        future = NOW + timedelta(seconds=1)
        assert derive_envelope_status([S.PENDING], NOW, future, E.IN_PROGRESS) == E.IN_PROGRESS

    def test_completion_beats_expiry(self):
        past = NOW - timedelta(days=1)
        assert derive_envelope_status([S.SIGNED], NOW, past, E.IN_PROGRESS) == E.COMPLETED

    @pytest.mark.parametrize("terminal", [E.DECLINED, E.REVOKED, E.EXPIRED, E.ARCHIVED])
    def test_terminal_statuses_absorb(self, terminal):
        assert derive_envelope_status([S.SIGNED, S.SIGNED], NOW, None, terminal) == terminal

    def test_empty_signer_set_rejected(self):
        with pytest.raises(ValueError):
            derive_envelope_status([], NOW, None, E.PENDING)

    @given(statuses=signer_sets, current=open_statuses)
    @settings(max_examples=300)
    def test_completed_iff_all_signed(self, statuses, current):
        derived = derive_envelope_status(statuses, NOW, None, current)
        assert (derived == E.COMPLETED) == all(s == S.SIGNED for s in statuses)

    @given(statuses=signer_sets, current=open_statuses)
    def test_declined_iff_any_declined_and_not_all_signed(self, statuses, current):
        derived = derive_envelope_status(statuses, NOW, None, current)
        assert (derived == E.DECLINED) == (S.DECLINED in statuses)

    @given(statuses=signer_sets, current=st.sampled_from(list(EnvelopeStatus)))
    def test_never_leaves_an_absorbing_status(self, statuses, current):
        derived = derive_envelope_status(statuses, NOW, NOW - timedelta(days=1), current)
        if current in TERMINAL_ENVELOPE_STATUSES and current != E.COMPLETED:
            assert derived == current

    @given(
        statuses=signer_sets,
        current=open_statuses,
        offset=st.integers(min_value=-10_000, max_value=10_000),
    )
    def test_result_is_deterministic(self, statuses, current, offset):
        expires_at = NOW + timedelta(seconds=offset)
        first = derive_envelope_status(statuses, NOW, expires_at, current)
        assert derive_envelope_status(list(statuses), NOW, expires_at, current) == first
        assert derive_envelope_status(reversed(statuses), NOW, expires_at, current) == first


class TestHelpers:
    def test_is_terminal(self):
        assert is_terminal(E.COMPLETED)
        assert is_terminal(E.ARCHIVED)
        assert not is_terminal(E.PENDING)
        assert not is_terminal(E.IN_PROGRESS)

    def test_is_expired(self):
        assert not is_expired(None, NOW)
        assert is_expired(NOW, NOW)
        assert not is_expired(NOW + timedelta(microseconds=1), NOW)


class TestDocumentStatusFor:
    def test_unsent_pending_is_draft(self):
        assert document_status_for(E.PENDING, sent=False) == DocumentStatus.DRAFT

    def test_sent_pending_is_sent(self):
        assert document_status_for(E.PENDING, sent=True) == DocumentStatus.SENT

    def test_in_progress_is_sent(self):
        assert document_status_for(E.IN_PROGRESS, sent=False) == DocumentStatus.SENT

    @pytest.mark.parametrize(
        "envelope_status",
        [E.COMPLETED, E.DECLINED, E.REVOKED, E.EXPIRED, E.ARCHIVED],
    )
    def test_terminal_statuses_share_names(self, envelope_status):
        assert document_status_for(envelope_status, sent=True).value == envelope_status.value
