"""
Module: signflow_kernel.models.envelope
Responsibility: ORM persistence for envelopes (one signing workflow per document).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One envelope per document (unique document_id).
    - Optimistic ``version`` column: a write based on a stale read raises
      StaleDataError, which the TransactionRunner maps to ConflictError.
    - Status changes follow ENVELOPE_WORKFLOW; terminal statuses are absorbing
      except COMPLETED -> ARCHIVED (ORM listener in db/immutability.py).

Failure modes:
    - StaleDataError on concurrent modification of the same envelope.
    - ImmutabilityViolationError on an illegal status change.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from signflow_kernel.db.types import enum_column
from signflow_kernel.domain.statuses import (
    EnvelopeStatus,
    SignerStatus,
)

if TYPE_CHECKING:
    from signflow_kernel.models.document import Document
    from signflow_kernel.models.signer import SignatureField, Signer


class Envelope(TrackedBase):
    """
    A signing workflow: one document, one or more signers.

    Contract:
        Status is written only through the lifecycle helpers in
        ``signflow_kernel.services.lifecycle`` while the owning Document row
        is locked.

    Guarantees:
        - ``signers`` are always loaded in ``position`` order.
        - ``sent_at`` is set exactly once, by send_envelope.
        - ``completed_at`` is set exactly when status becomes COMPLETED.
    """

    __tablename__ = "envelopes"

    __table_args__ = (
        Index("idx_envelope_org", "organization_id"),
        Index("idx_envelope_status_expires", "status", "expires_at"),
        Index("idx_envelope_status_updated", "status", "updated_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
        unique=True,
    )

    status: Mapped[EnvelopeStatus] = mapped_column(
        enum_column(EnvelopeStatus),
        nullable=False,
        default=EnvelopeStatus.PENDING,
    )

    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    document: Mapped[Document] = relationship(back_populates="envelope")

    signers: Mapped[list[Signer]] = relationship(
        back_populates="envelope",
        order_by="Signer.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    fields: Mapped[list[SignatureField]] = relationship(
        viewonly=True,
        order_by="SignatureField.created_at",
    )

    @property
    def was_sent(self) -> bool:
        return self.sent_at is not None

    def signer_statuses(self) -> list[SignerStatus]:
        return [s.status for s in self.signers]

    def __repr__(self) -> str:
        return f"<Envelope {self.id} status={self.status.value}>"
