"""
ExpirationSweep -- moves open envelopes past their expiry to EXPIRED.

Per envelope, in one unit of work:
    1. Lock the Document row and re-read the envelope family.
    2. Skip unless the envelope is still PENDING / IN_PROGRESS and
       ``expires_at <= now`` (a signer may have completed or declined it
       since the candidate query, or an earlier run already expired it).
    3. Every PENDING signer -> EXPIRED; envelope and document -> EXPIRED.
    4. Exactly one ENVELOPE_EXPIRED audit row, naming the expired signers.
    5. Commit, then publish ``envelope.expired``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from signflow_kernel.domain.dtos import TransitionEvent
from signflow_kernel.domain.state_machine import is_expired
from signflow_kernel.domain.statuses import (
    OPEN_ENVELOPE_STATUSES,
    AuditAction,
    EnvelopeStatus,
    SignerStatus,
)
from signflow_kernel.logging_config import get_logger
from signflow_kernel.selectors.envelope_selector import EnvelopeSelector
from signflow_kernel.services.auditor_service import SYSTEM_ACTOR
from signflow_kernel.services.lifecycle import transition_envelope, transition_signer
from signflow_kernel.services.unit_of_work import UnitOfWork

from signflow_batch.domain.types import EnvelopeOutcome, SweepKind
from signflow_batch.services.sweep import ReconciliationSweep

logger = get_logger("batch.expiration_sweep")


class ExpirationSweep(ReconciliationSweep):
    """Expire envelopes whose ``expires_at`` has passed."""

    kind = SweepKind.EXPIRATION

    def select_candidates(self, session: Session, as_of: datetime) -> list[tuple[UUID, UUID]]:
        return EnvelopeSelector(session).expiry_candidates(as_of, limit=self._batch_size)

    def process(self, envelope_id: UUID, document_id: UUID, as_of: datetime) -> EnvelopeOutcome:
        def _expire(uow: UnitOfWork) -> EnvelopeOutcome:
            document, envelope = uow.lock_envelope_family(document_id)
            if envelope.status not in OPEN_ENVELOPE_STATUSES or not is_expired(envelope.expires_at, uow.now):
                return EnvelopeOutcome.SKIPPED

            expired = [s for s in envelope.signers if s.status == SignerStatus.PENDING]
            for signer in expired:
                transition_signer(uow, signer, SignerStatus.EXPIRED, SYSTEM_ACTOR)
            from_status = transition_envelope(uow, envelope, document, EnvelopeStatus.EXPIRED, SYSTEM_ACTOR)

            uow.auditor.record_envelope_transition(
                envelope,
                AuditAction.ENVELOPE_EXPIRED,
                SYSTEM_ACTOR,
                from_status=from_status,
                details={
                    "expires_at": envelope.expires_at,
                    "expired_signer_ids": [str(s.id) for s in expired],
                },
            )
            uow.emit(
                TransitionEvent(
                    kind="envelope.expired",
                    organization_id=envelope.organization_id,
                    document_id=document.id,
                    envelope_id=envelope.id,
                    envelope_status=envelope.status,
                    occurred_at=uow.now,
                )
            )
            return EnvelopeOutcome.PROCESSED

        outcome = self._runner.run("expire_envelope", _expire)
        if outcome == EnvelopeOutcome.PROCESSED:
            logger.info("envelope_expired")
        else:
            logger.debug("envelope_expiry_skipped")
        return outcome
