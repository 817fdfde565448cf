"""
Module: signflow_kernel.models.signer
Responsibility: ORM persistence for signers and the signature fields placed for them.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - A signer leaves PENDING at most once (SIGNER_WORKFLOW, ORM listener).
    - Email is unique within an envelope (stored lower-cased).
    - ``position`` gives a stable, unique ordering within an envelope.
    - SignatureField rows are never updated; they can be deleted only while
      their envelope is unsent (ORM listener).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from signflow_kernel.db.types import enum_column
from signflow_kernel.domain.statuses import FieldKind, SignatureMethod, SignerStatus

if TYPE_CHECKING:
    from signflow_kernel.models.envelope import Envelope
    from signflow_kernel.models.signature import Signature


class Signer(TrackedBase):
    """
    A party who must sign or decline an envelope.

    Guarantees:
        - ``acted_at`` is set exactly when status leaves PENDING through a
          signer action (SIGNED or DECLINED).
        - ``decline_reason`` is only populated for DECLINED signers.
    """

    __tablename__ = "signers"

    __table_args__ = (
        UniqueConstraint("envelope_id", "email", name="uq_signer_envelope_email"),
        UniqueConstraint("envelope_id", "position", name="uq_signer_envelope_position"),
        Index("idx_signer_envelope", "envelope_id"),
    )

    envelope_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("envelopes.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    email: Mapped[str] = mapped_column(String(320), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[SignerStatus] = mapped_column(
        enum_column(SignerStatus),
        nullable=False,
        default=SignerStatus.PENDING,
    )

    signature_method: Mapped[SignatureMethod] = mapped_column(
        enum_column(SignatureMethod),
        nullable=False,
        default=SignatureMethod.CLICK,
    )

    acted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    invitation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_invited_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    envelope: Mapped[Envelope] = relationship(back_populates="signers")

    fields: Mapped[list[SignatureField]] = relationship(
        back_populates="signer",
        order_by="SignatureField.created_at",
        lazy="selectin",
    )

    signature: Mapped[Signature | None] = relationship(
        back_populates="signer",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Signer {self.email} status={self.status.value}>"


class SignatureField(TrackedBase):
    """
    A placed field (page, box, kind) that a signer must fill.

    Coordinates are in document points; page numbers are 1-based.
    """

    __tablename__ = "signature_fields"

    __table_args__ = (
        Index("idx_field_envelope", "envelope_id"),
        Index("idx_field_signer", "signer_id"),
    )

    envelope_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("envelopes.id"),
        nullable=False,
    )

    signer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("signers.id"),
        nullable=False,
    )

    page_number: Mapped[int] = mapped_column(Integer, nullable=False)

    x: Mapped[float] = mapped_column(Float, nullable=False)

    y: Mapped[float] = mapped_column(Float, nullable=False)

    width: Mapped[float] = mapped_column(Float, nullable=False)

    height: Mapped[float] = mapped_column(Float, nullable=False)

    kind: Mapped[FieldKind] = mapped_column(
        enum_column(FieldKind),
        nullable=False,
        default=FieldKind.SIGNATURE,
    )

    signer: Mapped[Signer] = relationship(back_populates="fields")

    def __repr__(self) -> str:
        return f"<SignatureField {self.kind.value} page={self.page_number}>"
