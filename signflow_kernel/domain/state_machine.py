"""
State Machine Core (``signflow_kernel.domain.state_machine``).

Responsibility:
    The single authority that turns a multiset of signer statuses (plus time)
    into an envelope status, and an envelope status into a document status.
    Every component that writes a status asks this module what to write.

Architecture position:
    Kernel > Domain -- pure functional core.  No I/O, no clock access (``now``
    is always passed in), no ORM imports.

Derivation precedence (first match wins):
    1. Current status terminal and not COMPLETED -> unchanged (absorbing).
    2. Every signer SIGNED                       -> COMPLETED.
    3. Any signer DECLINED                       -> DECLINED.
    4. expires_at reached while PENDING/IN_PROGRESS
                                                 -> EXPIRED (the caller must
                                                    run the expiry transition).
    5. Sent (IN_PROGRESS) or any signer acted    -> IN_PROGRESS, else PENDING.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from signflow_kernel.domain.statuses import (
    OPEN_ENVELOPE_STATUSES,
    TERMINAL_ENVELOPE_STATUSES,
    DocumentStatus,
    EnvelopeStatus,
    SignerStatus,
)


def is_terminal(status: EnvelopeStatus) -> bool:
    """True for COMPLETED, DECLINED, REVOKED, EXPIRED and ARCHIVED."""
    return status in TERMINAL_ENVELOPE_STATUSES


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    """An envelope is due for expiry once ``expires_at <= now``."""
    return expires_at is not None and expires_at <= now


def derive_envelope_status(
    signer_statuses: Iterable[SignerStatus],
    now: datetime,
    expires_at: datetime | None,
    current_status: EnvelopeStatus,
) -> EnvelopeStatus:
    """
    Compute the envelope status implied by its signers and the clock.

    Preconditions:
        - ``signer_statuses`` is non-empty (an envelope always has signers).
        - ``now`` and ``expires_at`` are both timezone-aware.

    Postconditions:
        - Returns COMPLETED iff every signer is SIGNED (unless the envelope
          was already absorbed into another terminal status).
        - A returned EXPIRED while ``current_status`` is open is a signal,
          not a write: the caller runs the expiry transition or rejects.

    Raises:
        ValueError: If ``signer_statuses`` is empty.
    """
    counts = Counter(SignerStatus(s) for s in signer_statuses)
    total = sum(counts.values())
    if total == 0:
        raise ValueError("An envelope must have at least one signer")

    if is_terminal(current_status) and current_status != EnvelopeStatus.COMPLETED:
        return current_status

    if counts[SignerStatus.SIGNED] == total:
        return EnvelopeStatus.COMPLETED

    if counts[SignerStatus.DECLINED] > 0:
        return EnvelopeStatus.DECLINED

    if current_status in OPEN_ENVELOPE_STATUSES and is_expired(expires_at, now):
        return EnvelopeStatus.EXPIRED

    if current_status == EnvelopeStatus.IN_PROGRESS or counts[SignerStatus.PENDING] < total:
        return EnvelopeStatus.IN_PROGRESS

    return EnvelopeStatus.PENDING


_DOCUMENT_STATUS_FOR: dict[EnvelopeStatus, DocumentStatus] = {
    EnvelopeStatus.IN_PROGRESS: DocumentStatus.SENT,
    EnvelopeStatus.COMPLETED: DocumentStatus.COMPLETED,
    EnvelopeStatus.DECLINED: DocumentStatus.DECLINED,
    EnvelopeStatus.REVOKED: DocumentStatus.REVOKED,
    EnvelopeStatus.EXPIRED: DocumentStatus.EXPIRED,
    EnvelopeStatus.ARCHIVED: DocumentStatus.ARCHIVED,
}


def document_status_for(envelope_status: EnvelopeStatus, sent: bool) -> DocumentStatus:
    """Mirror an envelope status onto its document.

    A PENDING envelope leaves the document DRAFT until it has been sent.
    """
    if envelope_status == EnvelopeStatus.PENDING:
        return DocumentStatus.SENT if sent else DocumentStatus.DRAFT
    return _DOCUMENT_STATUS_FOR[envelope_status]
