"""Domain models for the signflow kernel."""

from signflow_kernel.models.audit_log import AuditLog
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.models.signature import Signature
from signflow_kernel.models.signer import SignatureField, Signer

__all__ = [
    "AuditLog",
    "Document",
    "Envelope",
    "Signature",
    "SignatureField",
    "Signer",
]
