"""
Closed status enumerations (``signflow_kernel.domain.statuses``).

Responsibility
--------------
One tagged enumeration per entity status plus the small vocabularies used
by signer actions, signature fields and the audit trail.  Models, services,
sweeps and tests all import these; nothing stores a free-form status string.

Architecture position
---------------------
**Kernel domain layer** -- pure values.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or outer layers.
"""

from __future__ import annotations

from enum import Enum


class DocumentStatus(str, Enum):
    """Lifecycle status of a Document (mirrors its envelope once sent)."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    ARCHIVED = "ARCHIVED"


class EnvelopeStatus(str, Enum):
    """Lifecycle status of an Envelope.

    PENDING and IN_PROGRESS are the only non-terminal values.
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    ARCHIVED = "ARCHIVED"


class SignerStatus(str, Enum):
    """Lifecycle status of a Signer.  Leaves PENDING exactly once."""

    PENDING = "PENDING"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class SignerOutcome(str, Enum):
    """The two actions a signer can take."""

    SIGN = "SIGN"
    DECLINE = "DECLINE"


class SignatureMethod(str, Enum):
    """How a signer captured their signature."""

    CLICK = "CLICK"
    DRAW = "DRAW"
    TYPE = "TYPE"
    IMAGE = "IMAGE"


class FieldKind(str, Enum):
    """Kind of a placed signature field."""

    CLICK = "CLICK"
    DRAW = "DRAW"
    TYPE = "TYPE"
    IMAGE = "IMAGE"
    INITIAL = "INITIAL"
    DATE = "DATE"
    SIGNATURE = "SIGNATURE"


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: every state-changing kernel operation appends exactly one row
    per logical transition, tagged with one of these members.
    """

    # Document lifecycle
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_ARCHIVED = "DOCUMENT_ARCHIVED"

    # Envelope lifecycle
    ENVELOPE_CREATED = "ENVELOPE_CREATED"
    ENVELOPE_SENT = "ENVELOPE_SENT"
    ENVELOPE_IN_PROGRESS = "ENVELOPE_IN_PROGRESS"
    ENVELOPE_COMPLETED = "ENVELOPE_COMPLETED"
    ENVELOPE_DECLINED = "ENVELOPE_DECLINED"
    ENVELOPE_REVOKED = "ENVELOPE_REVOKED"
    ENVELOPE_EXPIRED = "ENVELOPE_EXPIRED"

    # Signer lifecycle
    SIGNER_SIGNED = "SIGNER_SIGNED"
    SIGNER_DECLINED = "SIGNER_DECLINED"
    INVITATION_RESENT = "INVITATION_RESENT"

    # Field placement
    SIGNATURE_FIELDS_PLACED = "SIGNATURE_FIELDS_PLACED"
    SIGNATURE_FIELD_REMOVED = "SIGNATURE_FIELD_REMOVED"


TERMINAL_ENVELOPE_STATUSES: frozenset[EnvelopeStatus] = frozenset({
    EnvelopeStatus.COMPLETED,
    EnvelopeStatus.DECLINED,
    EnvelopeStatus.REVOKED,
    EnvelopeStatus.EXPIRED,
    EnvelopeStatus.ARCHIVED,
})

OPEN_ENVELOPE_STATUSES: frozenset[EnvelopeStatus] = frozenset({
    EnvelopeStatus.PENDING,
    EnvelopeStatus.IN_PROGRESS,
})

TERMINAL_SIGNER_STATUSES: frozenset[SignerStatus] = frozenset({
    SignerStatus.SIGNED,
    SignerStatus.DECLINED,
    SignerStatus.REVOKED,
    SignerStatus.EXPIRED,
})
