"""Selectors for the signflow kernel (read side)."""

from signflow_kernel.selectors.audit_selector import AuditSelector
from signflow_kernel.selectors.envelope_selector import EnvelopeSelector

__all__ = [
    "AuditSelector",
    "EnvelopeSelector",
]
