"""
Module: signflow_kernel.selectors.envelope_selector
Responsibility: Read access to documents, envelopes and signers as frozen views,
    plus the candidate queries the reconciliation sweeps start from.
Architecture position: Kernel > Selectors.

Candidate queries are advisory: they run without locks and every sweep
re-checks the envelope after taking the Document row lock.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from signflow_kernel.domain.dtos import (
    AuditEntryView,
    DocumentView,
    EnvelopeView,
    SignatureFieldView,
    SignerView,
)
from signflow_kernel.domain.statuses import (
    OPEN_ENVELOPE_STATUSES,
    DocumentStatus,
    EnvelopeStatus,
)
from signflow_kernel.exceptions import (
    DocumentNotFoundError,
    EnvelopeNotFoundError,
    SignerNotFoundError,
)
from signflow_kernel.models.audit_log import AuditLog
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.models.signer import SignatureField, Signer
from signflow_kernel.selectors.base import BaseSelector


# =============================================================================
# ORM -> view conversion
# =============================================================================


def field_view(field: SignatureField) -> SignatureFieldView:
    return SignatureFieldView(
        field_id=field.id,
        signer_id=field.signer_id,
        page_number=field.page_number,
        x=field.x,
        y=field.y,
        width=field.width,
        height=field.height,
        kind=field.kind,
    )


def signer_view(signer: Signer) -> SignerView:
    return SignerView(
        signer_id=signer.id,
        position=signer.position,
        name=signer.name,
        email=signer.email,
        status=signer.status,
        signature_method=signer.signature_method,
        acted_at=signer.acted_at,
        has_signature=signer.signature is not None,
        fields=tuple(field_view(f) for f in signer.fields),
    )


def document_view(document: Document) -> DocumentView:
    return DocumentView(
        document_id=document.id,
        organization_id=document.organization_id,
        title=document.title,
        file_ref=document.file_ref,
        status=document.status,
        archived_file_ref=document.archived_file_ref,
        created_at=document.created_at,
    )


def audit_entry_view(row: AuditLog) -> AuditEntryView:
    return AuditEntryView(
        audit_id=row.id,
        document_id=row.document_id,
        envelope_id=row.envelope_id,
        signer_id=row.signer_id,
        seq=row.seq,
        action=row.action,
        actor=row.actor,
        occurred_at=row.occurred_at,
        ip_address=row.ip_address,
        details=dict(row.details or {}),
        hash=row.hash,
    )


def envelope_view(
    envelope: Envelope,
    document: Document,
    audit_rows: list[AuditLog] | None = None,
) -> EnvelopeView:
    return EnvelopeView(
        envelope_id=envelope.id,
        document=document_view(document),
        status=envelope.status,
        expires_at=envelope.expires_at,
        sent_at=envelope.sent_at,
        completed_at=envelope.completed_at,
        created_at=envelope.created_at,
        updated_at=envelope.updated_at,
        signers=tuple(signer_view(s) for s in envelope.signers),
        audit_entries=tuple(audit_entry_view(r) for r in audit_rows or ()),
    )


# =============================================================================
# Selector
# =============================================================================


class EnvelopeSelector(BaseSelector[Envelope]):
    """Read-only queries over envelopes, scoped by organization where asked."""

    def _envelope_query(self):
        return select(Envelope).options(
            selectinload(Envelope.signers).selectinload(Signer.fields),
            selectinload(Envelope.signers).selectinload(Signer.signature),
            selectinload(Envelope.document),
        )

    def audit_rows(self, document_id: UUID) -> list[AuditLog]:
        """The document's audit rows in commit (seq) order."""
        return list(
            self.session.execute(
                select(AuditLog)
                .where(AuditLog.document_id == document_id)
                .order_by(AuditLog.seq)
            ).scalars()
        )

    def get_envelope(
        self,
        envelope_id: UUID,
        organization_id: UUID | None = None,
        include_audit: bool = False,
    ) -> EnvelopeView:
        """
        Envelope with its signers (and optionally its audit trail).

        Raises:
            EnvelopeNotFoundError: Unknown id, or owned by another organization.
        """
        envelope = self.session.execute(
            self._envelope_query().where(Envelope.id == envelope_id)
        ).scalar_one_or_none()
        if envelope is None or (
            organization_id is not None and envelope.organization_id != organization_id
        ):
            raise EnvelopeNotFoundError(str(envelope_id))

        audit_rows = self.audit_rows(envelope.document_id) if include_audit else None
        return envelope_view(envelope, envelope.document, audit_rows)

    def get_document(
        self,
        document_id: UUID,
        organization_id: UUID | None = None,
    ) -> DocumentView:
        document = self.session.get(Document, document_id)
        if document is None or (
            organization_id is not None and document.organization_id != organization_id
        ):
            raise DocumentNotFoundError(str(document_id))
        return document_view(document)

    def list_documents(
        self,
        organization_id: UUID,
        status: DocumentStatus | None = None,
        limit: int = 100,
    ) -> list[DocumentView]:
        """An organization's documents, oldest first."""
        stmt = select(Document).where(Document.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(Document.status == status)
        stmt = stmt.order_by(Document.created_at, Document.id).limit(limit)
        return [document_view(d) for d in self.session.execute(stmt).scalars()]

    def get_signer(self, signer_id: UUID, organization_id: UUID | None = None) -> SignerView:
        """
        Raises:
            SignerNotFoundError: Unknown id, or its envelope belongs to
                another organization.
        """
        stmt = (
            select(Signer)
            .join(Envelope, Envelope.id == Signer.envelope_id)
            .where(Signer.id == signer_id)
            .options(selectinload(Signer.fields), selectinload(Signer.signature))
        )
        if organization_id is not None:
            stmt = stmt.where(Envelope.organization_id == organization_id)
        signer = self.session.execute(stmt).scalar_one_or_none()
        if signer is None:
            raise SignerNotFoundError(str(signer_id))
        return signer_view(signer)

    def list_envelopes(
        self,
        organization_id: UUID,
        status: EnvelopeStatus | None = None,
        limit: int = 100,
    ) -> list[EnvelopeView]:
        """An organization's envelopes with their signers, oldest first."""
        stmt = self._envelope_query().where(Envelope.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(Envelope.status == status)
        stmt = stmt.order_by(Envelope.created_at, Envelope.id).limit(limit)
        return [envelope_view(e, e.document) for e in self.session.execute(stmt).scalars()]

    def signer_document_id(self, signer_id: UUID) -> UUID:
        """
        Resolve a signer to the document that anchors its envelope family.

        Unlocked; callers lock the returned document before deciding anything.

        Raises:
            SignerNotFoundError: Unknown signer.
        """
        document_id = self.session.execute(
            select(Envelope.document_id)
            .join(Signer, Signer.envelope_id == Envelope.id)
            .where(Signer.id == signer_id)
        ).scalar_one_or_none()
        if document_id is None:
            raise SignerNotFoundError(str(signer_id))
        return document_id

    # Sweep candidates

    def expiry_candidates(self, now: datetime, limit: int | None = None) -> list[tuple[UUID, UUID]]:
        """(envelope_id, document_id) of open envelopes with ``expires_at <= now``."""
        stmt = (
            select(Envelope.id, Envelope.document_id)
            .where(Envelope.status.in_(sorted(OPEN_ENVELOPE_STATUSES, key=lambda s: s.value)))
            .where(Envelope.expires_at.is_not(None))
            .where(Envelope.expires_at <= now)
            .order_by(Envelope.expires_at, Envelope.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(row[0], row[1]) for row in self.session.execute(stmt)]

    def archival_candidates(
        self,
        cutoff: datetime,
        limit: int | None = None,
    ) -> list[tuple[UUID, UUID]]:
        """(envelope_id, document_id) of COMPLETED envelopes untouched since ``cutoff``."""
        stmt = (
            select(Envelope.id, Envelope.document_id)
            .where(Envelope.status == EnvelopeStatus.COMPLETED)
            .where(Envelope.updated_at < cutoff)
            .order_by(Envelope.updated_at, Envelope.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(row[0], row[1]) for row in self.session.execute(stmt)]
