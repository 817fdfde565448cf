"""
Module: signflow_kernel.models.document
Responsibility: ORM persistence for uploaded documents.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - A document owns at most one envelope (unique envelopes.document_id).
    - The Document row is the lock anchor for its whole envelope family:
      every state-changing transaction locks it first.
    - Status changes follow DOCUMENT_WORKFLOW (ORM listener in db/immutability.py).

Audit relevance:
    Every status change of a document is accompanied by an AuditLog row
    carrying the same document_id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow_kernel.db.base import TrackedBase, UUIDString
from signflow_kernel.db.types import enum_column
from signflow_kernel.domain.statuses import DocumentStatus

if TYPE_CHECKING:
    from signflow_kernel.models.envelope import Envelope


class Document(TrackedBase):
    """
    An uploaded document awaiting (or past) signature.

    Guarantees:
        - ``file_ref`` is the artifact-store reference of the original upload.
        - ``archived_file_ref`` is set only together with status ARCHIVED.
    """

    __tablename__ = "documents"

    __table_args__ = (
        Index("idx_document_org", "organization_id"),
        Index("idx_document_status", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False)

    file_ref: Mapped[str] = mapped_column(String(1024), nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        enum_column(DocumentStatus),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )

    archived_file_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    envelope: Mapped[Envelope | None] = relationship(
        back_populates="document",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Document {self.id} status={self.status.value}>"
