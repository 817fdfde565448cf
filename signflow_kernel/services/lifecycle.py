"""
Status write helpers -- the only code that assigns a status column.

Every envelope, document and signer status change in the kernel and in the
sweeps goes through ``transition_envelope()`` / ``transition_signer()``.
Both check the lifecycle tables first (IllegalTransitionError) and stamp
audit metadata from the unit of work's clock reading.  The document status
is always derived from the envelope status, never set on its own.

Callers must hold the Document row lock (UnitOfWork.lock_envelope_family).
"""

from __future__ import annotations

from signflow_kernel.domain.state_machine import document_status_for
from signflow_kernel.domain.statuses import EnvelopeStatus, SignerStatus
from signflow_kernel.domain.workflow import (
    DOCUMENT_WORKFLOW,
    ENVELOPE_WORKFLOW,
    SIGNER_WORKFLOW,
    ensure_transition,
)
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.models.signer import Signer
from signflow_kernel.services.unit_of_work import UnitOfWork


def transition_envelope(
    uow: UnitOfWork,
    envelope: Envelope,
    document: Document,
    to_status: EnvelopeStatus,
    actor: str,
) -> EnvelopeStatus:
    """
    Move ``envelope`` to ``to_status`` and mirror it onto ``document``.

    Returns:
        The envelope status before the change.

    Raises:
        IllegalTransitionError: If either change is not in its lifecycle table.
    """
    from_status = envelope.status
    ensure_transition(ENVELOPE_WORKFLOW, envelope.id, from_status, to_status)

    doc_status = document_status_for(to_status, sent=envelope.was_sent)
    ensure_transition(DOCUMENT_WORKFLOW, document.id, document.status, doc_status)

    envelope.status = to_status
    if to_status == EnvelopeStatus.COMPLETED:
        envelope.completed_at = uow.now
    envelope.touch(uow.now, actor)

    if document.status != doc_status:
        document.status = doc_status
        document.touch(uow.now, actor)
    return from_status


def transition_signer(
    uow: UnitOfWork,
    signer: Signer,
    to_status: SignerStatus,
    actor: str,
) -> SignerStatus:
    """
    Move ``signer`` to ``to_status``.

    ``acted_at`` is stamped only for the signer's own actions
    (SIGNED / DECLINED), not for revocation or expiry.
    """
    from_status = signer.status
    ensure_transition(SIGNER_WORKFLOW, signer.id, from_status, to_status)
    signer.status = to_status
    if to_status in (SignerStatus.SIGNED, SignerStatus.DECLINED):
        signer.acted_at = uow.now
    signer.touch(uow.now, actor)
    return from_status
