"""
Module: signflow_kernel.models.audit_log
Responsibility: ORM persistence for the per-document tamper-evident audit trail.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener).
    - ``seq`` is unique per document and allocated from a locked counter row
      by SequenceService, so rows of one document have a total commit order.
    - hash = H(document_id | seq | action | payload_hash | prev_hash).
      Validated by AuditorService.validate_chain().

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditLog IS the audit trail.  Every state-changing kernel operation
    appends exactly one row per logical transition, in the same transaction
    as the state change it records.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signflow_kernel.db.base import Base, UTCDateTime, UUIDString
from signflow_kernel.db.types import enum_column
from signflow_kernel.domain.statuses import AuditAction


class AuditLog(Base):
    """
    Audit log row with hash chain for tamper evidence.

    Guarantees:
        - prev_hash is None only for the first row of a document (seq 1).

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_logs"

    __table_args__ = (
        UniqueConstraint("document_id", "seq", name="uq_audit_document_seq"),
        Index("idx_audit_occurred", "occurred_at", "document_id", "seq"),
        Index("idx_audit_envelope", "envelope_id"),
        Index("idx_audit_action", "action"),
    )

    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    envelope_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    signer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Position in the document's chain (1-based)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        enum_column(AuditAction),
        nullable=False,
    )

    # Who performed the action ("SYSTEM" for sweeps)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} doc={self.document_id} seq={self.seq}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
