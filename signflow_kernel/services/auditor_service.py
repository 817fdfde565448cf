"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Appends immutable, hash-chained AuditLog rows for every state-changing
    kernel operation, and validates the chain for tamper detection.

Architecture position:
    Kernel > Services -- imperative shell, called by DocumentService,
    EnvelopeService, CompletionAggregator and the reconciliation sweeps,
    always inside their unit of work.

Invariants enforced:
    - One chain per document.  ``seq`` comes from the locked counter
      ``audit:<document_id>`` (SequenceService); the caller already holds
      the Document row lock, so rows of one document are totally ordered
      by commit.
    - hash = H(document_id | seq | action | payload_hash | prev_hash), where
      the payload covers every other column of the row.
    - Append-only: rows are never modified or deleted (ORM listeners).
    - An audit row is written in the same transaction as the state change
      it records: both commit or neither does.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match stored hash,
      prev_hash does not match the predecessor's hash, or seq has a gap.
"""

from __future__ import annotations

from datetime import timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from signflow_kernel.domain.clock import Clock, SystemClock
from signflow_kernel.domain.dtos import AuditEntryRef
from signflow_kernel.domain.statuses import AuditAction
from signflow_kernel.exceptions import AuditChainBrokenError
from signflow_kernel.logging_config import get_logger
from signflow_kernel.models.audit_log import AuditLog
from signflow_kernel.services.sequence_service import SequenceService
from signflow_kernel.utils.hashing import hash_audit_entry, hash_payload, to_jsonable

logger = get_logger("services.auditor")

SYSTEM_ACTOR = "SYSTEM"


def _row_payload(row: AuditLog) -> dict[str, Any]:
    """Everything on the row except its chain fields."""
    return {
        "envelope_id": str(row.envelope_id) if row.envelope_id else None,
        "signer_id": str(row.signer_id) if row.signer_id else None,
        "actor": row.actor,
        "occurred_at": row.occurred_at.astimezone(timezone.utc).isoformat(),
        "ip_address": row.ip_address,
        "details": row.details,
    }


def to_ref(row: AuditLog) -> AuditEntryRef:
    return AuditEntryRef(
        audit_id=row.id,
        document_id=row.document_id,
        seq=row.seq,
        action=row.action,
    )


class AuditorService:
    """
    Service for appending and validating tamper-evident audit rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT take the Document row lock; callers hold it already.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self, document_id: UUID) -> str | None:
        last = self._session.execute(
            select(AuditLog.hash)
            .where(AuditLog.document_id == document_id)
            .order_by(AuditLog.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return last

    def record(
        self,
        action: AuditAction,
        document_id: UUID,
        actor: str,
        envelope_id: UUID | None = None,
        signer_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """
        Append one audit row to ``document_id``'s chain.

        Postconditions:
            - The row is flushed with the next ``seq`` for the document and
              a hash linking it to the previous row.
        """
        seq = self._sequence_service.next_value(
            SequenceService.audit_sequence_name(document_id)
        )
        prev_hash = self._get_last_hash(document_id)

        row = AuditLog(
            document_id=document_id,
            envelope_id=envelope_id,
            signer_id=signer_id,
            seq=seq,
            action=action,
            actor=actor,
            occurred_at=self._clock.now(),
            ip_address=ip_address,
            details=to_jsonable(details or {}),
        )
        row.payload_hash = hash_payload(_row_payload(row))
        row.prev_hash = prev_hash
        row.hash = hash_audit_entry(
            document_id=str(document_id),
            seq=seq,
            action=action.value,
            payload_hash=row.payload_hash,
            prev_hash=prev_hash,
        )

        self._session.add(row)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "document_id": str(document_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return row

    # Domain-specific recording methods

    def record_document_uploaded(self, document, actor: str) -> AuditLog:
        return self.record(
            AuditAction.DOCUMENT_UPLOADED,
            document_id=document.id,
            actor=actor,
            details={"title": document.title, "file_ref": document.file_ref},
        )

    def record_envelope_created(self, envelope, actor: str) -> AuditLog:
        return self.record(
            AuditAction.ENVELOPE_CREATED,
            document_id=envelope.document_id,
            envelope_id=envelope.id,
            actor=actor,
            details={
                "signers": [s.email for s in envelope.signers],
                "expires_at": envelope.expires_at,
            },
        )

    def record_envelope_transition(
        self,
        envelope,
        action: AuditAction,
        actor: str,
        from_status,
        details: dict[str, Any] | None = None,
        signer_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """Record an envelope status change (sent, completed, revoked, ...)."""
        return self.record(
            action,
            document_id=envelope.document_id,
            envelope_id=envelope.id,
            signer_id=signer_id,
            actor=actor,
            ip_address=ip_address,
            details={
                "from_status": from_status,
                "to_status": envelope.status,
                **(details or {}),
            },
        )

    def record_signer_action(
        self,
        signer,
        action: AuditAction,
        actor: str,
        document_id: UUID,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        return self.record(
            action,
            document_id=document_id,
            envelope_id=signer.envelope_id,
            signer_id=signer.id,
            actor=actor,
            ip_address=ip_address,
            details={"email": signer.email, **(details or {})},
        )

    def record_document_archived(self, document, envelope_id: UUID) -> AuditLog:
        return self.record(
            AuditAction.DOCUMENT_ARCHIVED,
            document_id=document.id,
            envelope_id=envelope_id,
            actor=SYSTEM_ACTOR,
            details={
                "file_ref": document.file_ref,
                "archived_file_ref": document.archived_file_ref,
            },
        )

    # Validation

    def validate_chain(self, document_id: UUID) -> bool:
        """
        Validate one document's audit chain.

        Postconditions:
            - Returns ``True`` only if seq runs 1..n without gaps, every
              stored ``hash`` matches the recomputed value, every
              ``payload_hash`` matches the row contents, and every
              ``prev_hash`` matches its predecessor's ``hash``.

        Raises:
            AuditChainBrokenError: If validation fails at any point.
        """
        rows = self._session.execute(
            select(AuditLog)
            .where(AuditLog.document_id == document_id)
            .order_by(AuditLog.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for expected_seq, row in enumerate(rows, start=1):
            if row.seq != expected_seq:
                self._broken(document_id, row.seq, f"seq {expected_seq}", f"seq {row.seq}")

            payload_hash = hash_payload(_row_payload(row))
            if row.payload_hash != payload_hash:
                self._broken(document_id, row.seq, payload_hash, row.payload_hash)

            if row.prev_hash != prev_hash:
                self._broken(document_id, row.seq, prev_hash or "None", row.prev_hash or "None")

            expected_hash = hash_audit_entry(
                document_id=str(document_id),
                seq=row.seq,
                action=row.action.value,
                payload_hash=row.payload_hash,
                prev_hash=row.prev_hash,
            )
            if row.hash != expected_hash:
                self._broken(document_id, row.seq, expected_hash, row.hash)

            prev_hash = row.hash

        logger.info(
            "audit_chain_valid",
            extra={"document_id": str(document_id), "entry_count": len(rows)},
        )
        return True

    def validate_all(self) -> int:
        """Validate every document's chain; return the number of chains checked."""
        document_ids = self._session.execute(
            select(AuditLog.document_id).distinct()
        ).scalars().all()
        for document_id in document_ids:
            self.validate_chain(document_id)
        return len(document_ids)

    @staticmethod
    def _broken(document_id, seq: int, expected: str, actual: str) -> None:
        logger.critical(
            "audit_chain_broken",
            extra={"document_id": str(document_id), "seq": seq},
        )
        raise AuditChainBrokenError(str(document_id), seq, expected, actual)
