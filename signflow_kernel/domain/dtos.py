"""
Data Transfer Objects for the signflow kernel.

Frozen dataclasses passed into services (specs) and returned out of them
(results, views).  Services never hand ORM instances across a transaction
boundary: a status read from a DTO is a snapshot, never a basis for a write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from signflow_kernel.domain.statuses import (
    AuditAction,
    DocumentStatus,
    EnvelopeStatus,
    FieldKind,
    SignatureMethod,
    SignerStatus,
)


# =============================================================================
# Input specs
# =============================================================================


@dataclass(frozen=True)
class FieldSpec:
    """Placement of one signature field (page is 1-based).

    ``signer_id`` is required when fields are placed on an existing envelope
    and ignored when fields travel inside a SignerSpec.
    """

    page_number: int
    x: float
    y: float
    width: float
    height: float
    kind: FieldKind | str = FieldKind.SIGNATURE
    signer_id: UUID | None = None


@dataclass(frozen=True)
class SignerSpec:
    """A signer to attach when an envelope is created."""

    email: str
    name: str | None = None
    signature_method: SignatureMethod | str = SignatureMethod.CLICK
    fields: tuple[FieldSpec, ...] = ()


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class AuditEntryRef:
    """Reference to an appended audit log row."""

    audit_id: UUID
    document_id: UUID
    seq: int
    action: AuditAction


@dataclass(frozen=True)
class SignerActionResult:
    """Outcome of one committed signer action."""

    signer_id: UUID
    envelope_id: UUID
    document_id: UUID
    signer_status: SignerStatus
    envelope_status: EnvelopeStatus
    document_status: DocumentStatus
    audit_entries: tuple[AuditEntryRef, ...]

    @property
    def envelope_changed(self) -> bool:
        return len(self.audit_entries) > 1


@dataclass(frozen=True)
class TransitionEvent:
    """A committed transition published to the notification collaborator.

    Published only after the transaction that produced it has committed.
    """

    kind: str
    organization_id: UUID
    document_id: UUID
    envelope_id: UUID
    envelope_status: EnvelopeStatus
    occurred_at: datetime
    signer_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Read views
# =============================================================================


@dataclass(frozen=True)
class SignatureFieldView:
    field_id: UUID
    signer_id: UUID
    page_number: int
    x: float
    y: float
    width: float
    height: float
    kind: FieldKind


@dataclass(frozen=True)
class SignerView:
    signer_id: UUID
    position: int
    name: str
    email: str
    status: SignerStatus
    signature_method: SignatureMethod
    acted_at: datetime | None
    has_signature: bool
    fields: tuple[SignatureFieldView, ...] = ()


@dataclass(frozen=True)
class DocumentView:
    document_id: UUID
    organization_id: UUID
    title: str
    file_ref: str
    status: DocumentStatus
    archived_file_ref: str | None
    created_at: datetime


@dataclass(frozen=True)
class AuditEntryView:
    audit_id: UUID
    document_id: UUID
    envelope_id: UUID | None
    signer_id: UUID | None
    seq: int
    action: AuditAction
    actor: str
    occurred_at: datetime
    ip_address: str | None
    details: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditCursor:
    """Position in the cross-document audit scan: the last row a reader consumed."""

    occurred_at: datetime
    document_id: UUID
    seq: int

    @classmethod
    def after(cls, entry: AuditEntryView) -> AuditCursor:
        return cls(entry.occurred_at, entry.document_id, entry.seq)


@dataclass(frozen=True)
class EnvelopeView:
    envelope_id: UUID
    document: DocumentView
    status: EnvelopeStatus
    expires_at: datetime | None
    sent_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    signers: tuple[SignerView, ...]
    audit_entries: tuple[AuditEntryView, ...] = ()

    @property
    def is_terminal(self) -> bool:
        from signflow_kernel.domain.state_machine import is_terminal

        return is_terminal(self.status)
