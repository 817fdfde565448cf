"""
Module: signflow_kernel.models.signature
Responsibility: ORM persistence for captured signatures.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - At most one Signature per signer (unique signer_id), so a duplicate
      SIGN can never persist even if two transactions interleave.
    - Append-only: UPDATE and DELETE are rejected (ORM listener).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow_kernel.db.base import Base, UTCDateTime, UUIDString
from signflow_kernel.db.types import enum_column
from signflow_kernel.domain.statuses import SignatureMethod

if TYPE_CHECKING:
    from signflow_kernel.models.signer import Signer


class Signature(Base):
    """The signature artifact a signer supplied when signing."""

    __tablename__ = "signatures"

    signer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("signers.id"),
        nullable=False,
        unique=True,
    )

    envelope_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("envelopes.id"),
        nullable=False,
    )

    # Opaque reference into the artifact store (image/typed text/drawn path)
    artifact_ref: Mapped[str] = mapped_column(String(1024), nullable=False)

    method: Mapped[SignatureMethod] = mapped_column(
        enum_column(SignatureMethod),
        nullable=False,
    )

    signed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    signer: Mapped[Signer] = relationship(back_populates="signature")

    def __repr__(self) -> str:
        return f"<Signature signer={self.signer_id} method={self.method.value}>"
