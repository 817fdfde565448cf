"""
ArchivalSweep -- archives COMPLETED envelopes older than the retention window.

Per envelope:
    1. Short read: skip unless the envelope is still COMPLETED; take the
       document's file reference.
    2. ``ArtifactStore.archive()`` outside any transaction.  Idempotent, so
       a file moved by a run whose status commit failed is not moved again.
    3. One unit of work: lock, re-check COMPLETED, envelope and document ->
       ARCHIVED, record ``archived_file_ref``, one DOCUMENT_ARCHIVED row.

An envelope that is already ARCHIVED is never a candidate and is skipped by
both re-checks, so re-running the sweep adds no audit rows and moves no
files.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from signflow_kernel.domain.dtos import TransitionEvent
from signflow_kernel.domain.statuses import EnvelopeStatus
from signflow_kernel.logging_config import get_logger
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.selectors.envelope_selector import EnvelopeSelector
from signflow_kernel.services.auditor_service import SYSTEM_ACTOR
from signflow_kernel.services.lifecycle import transition_envelope
from signflow_kernel.services.unit_of_work import TransactionRunner, UnitOfWork

from signflow_batch.domain.types import EnvelopeOutcome, SweepKind
from signflow_batch.services.artifact_store import ArtifactStore
from signflow_batch.services.sweep import ReconciliationSweep

logger = get_logger("batch.archival_sweep")

DEFAULT_RETENTION_DAYS = 7


class ArchivalSweep(ReconciliationSweep):
    """Archive completed envelopes untouched for ``retention_days``."""

    kind = SweepKind.ARCHIVAL

    def __init__(
        self,
        runner: TransactionRunner,
        store: ArtifactStore,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        batch_size: int | None = None,
    ):
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        super().__init__(runner, batch_size=batch_size)
        self._store = store
        self._retention = timedelta(days=retention_days)

    def cutoff(self, as_of: datetime) -> datetime:
        return as_of - self._retention

    def select_candidates(self, session: Session, as_of: datetime) -> list[tuple[UUID, UUID]]:
        return EnvelopeSelector(session).archival_candidates(
            self.cutoff(as_of), limit=self._batch_size,
        )

    def process(self, envelope_id: UUID, document_id: UUID, as_of: datetime) -> EnvelopeOutcome:
        file_ref = self._runner.read(
            lambda session: _completed_file_ref(session, envelope_id, document_id)
        )
        if file_ref is None:
            logger.debug("envelope_archival_skipped")
            return EnvelopeOutcome.SKIPPED

        artifact = self._store.archive(file_ref)

        def _archive(uow: UnitOfWork) -> EnvelopeOutcome:
            document, envelope = uow.lock_envelope_family(document_id)
            if envelope.status != EnvelopeStatus.COMPLETED:
                return EnvelopeOutcome.SKIPPED

            transition_envelope(uow, envelope, document, EnvelopeStatus.ARCHIVED, SYSTEM_ACTOR)
            document.archived_file_ref = artifact.archived_ref
            uow.auditor.record_document_archived(document, envelope.id)
            uow.emit(
                TransitionEvent(
                    kind="envelope.archived",
                    organization_id=envelope.organization_id,
                    document_id=document.id,
                    envelope_id=envelope.id,
                    envelope_status=envelope.status,
                    occurred_at=uow.now,
                    details={"archived_file_ref": artifact.archived_ref},
                )
            )
            return EnvelopeOutcome.PROCESSED

        outcome = self._runner.run("archive_envelope", _archive)
        logger.info(
            "envelope_archived" if outcome == EnvelopeOutcome.PROCESSED else "envelope_archival_skipped",
            extra={"archived_ref": artifact.archived_ref, "moved": artifact.moved},
        )
        return outcome


def _completed_file_ref(session: Session, envelope_id: UUID, document_id: UUID) -> str | None:
    envelope = session.get(Envelope, envelope_id)
    if envelope is None or envelope.status != EnvelopeStatus.COMPLETED:
        return None
    document = session.get(Document, document_id)
    return document.file_ref if document is not None else None
