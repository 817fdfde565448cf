"""
CompletionAggregator -- atomic signer actions and envelope completion.

Responsibility:
    Applies one signer's SIGN or DECLINE and, in the same transaction,
    re-derives the envelope status from the full signer set.  Exactly one
    of N concurrent final signers observes "all signed" and completes the
    envelope; every other signer's action still commits, but without a
    second completion.

Architecture position:
    Kernel > Services -- imperative shell over TransactionRunner.

Algorithm (one unit of work):
    1. Resolve signer -> document (unlocked) or SignerNotFoundError.
    2. Lock the Document row; re-read envelope + every signer.
    3. Envelope terminal or past expiry -> InvalidStateError.
    4. Signer not PENDING -> AlreadyActedError.
    5. SIGN: persist Signature, signer -> SIGNED.
       DECLINE: signer -> DECLINED with optional reason.
    6. One signer audit row (SIGNER_SIGNED / SIGNER_DECLINED).
    7. derive_envelope_status(); if it changed, write envelope + document
       status and one envelope audit row.
    8. Commit; then publish envelope.completed / envelope.declined.

Invariants enforced:
    - A document reaches COMPLETED exactly once and only when every signer
      is SIGNED.
    - At most one Signature per signer (checked under the lock and by the
      unique signer_id constraint).
    - Every committed action has its audit rows; a failed action has none.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from signflow_kernel.domain.dtos import SignerActionResult, TransitionEvent
from signflow_kernel.domain.state_machine import (
    derive_envelope_status,
    is_expired,
    is_terminal,
)
from signflow_kernel.domain.statuses import (
    AuditAction,
    EnvelopeStatus,
    SignatureMethod,
    SignerOutcome,
    SignerStatus,
)
from signflow_kernel.domain.validation import parse_signature_method
from signflow_kernel.exceptions import (
    AlreadyActedError,
    ArtifactMissingError,
    InvalidStateError,
    SignerNotFoundError,
)
from signflow_kernel.logging_config import LogContext, get_logger
from signflow_kernel.models.signature import Signature
from signflow_kernel.selectors.envelope_selector import EnvelopeSelector
from signflow_kernel.services.auditor_service import to_ref
from signflow_kernel.services.lifecycle import transition_envelope, transition_signer
from signflow_kernel.services.unit_of_work import TransactionRunner, UnitOfWork

logger = get_logger("services.completion_aggregator")

_ENVELOPE_AUDIT_ACTION: dict[EnvelopeStatus, AuditAction] = {
    EnvelopeStatus.IN_PROGRESS: AuditAction.ENVELOPE_IN_PROGRESS,
    EnvelopeStatus.COMPLETED: AuditAction.ENVELOPE_COMPLETED,
    EnvelopeStatus.DECLINED: AuditAction.ENVELOPE_DECLINED,
}

_PUBLISHED_KINDS: dict[EnvelopeStatus, str] = {
    EnvelopeStatus.COMPLETED: "envelope.completed",
    EnvelopeStatus.DECLINED: "envelope.declined",
}


class CompletionAggregator:
    """
    Entry point for signer actions.

    Contract:
        ``act()`` is safe to call concurrently for any mix of signers and
        envelopes.  Actions on one envelope serialise on its Document row
        lock; actions on different envelopes proceed in parallel.
    """

    def __init__(self, runner: TransactionRunner):
        self._runner = runner

    def sign(
        self,
        signer_id: UUID,
        artifact_ref: str | None,
        *,
        signature_method: SignatureMethod | str | None = None,
        ip_address: str | None = None,
    ) -> SignerActionResult:
        """Sign with a rendered signature artifact.  See ``act()``."""
        return self.act(
            signer_id,
            SignerOutcome.SIGN,
            artifact_ref=artifact_ref,
            signature_method=signature_method,
            ip_address=ip_address,
        )

    def decline(
        self,
        signer_id: UUID,
        *,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> SignerActionResult:
        """Decline to sign.  See ``act()``."""
        return self.act(signer_id, SignerOutcome.DECLINE, reason=reason, ip_address=ip_address)

    def act(
        self,
        signer_id: UUID,
        outcome: SignerOutcome,
        *,
        artifact_ref: str | None = None,
        signature_method: SignatureMethod | str | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> SignerActionResult:
        """
        Apply a signer's action and re-derive the envelope status atomically.

        Preconditions:
            - ``artifact_ref`` is non-empty for SIGN.

        Postconditions:
            - On success, the signer's status, any Signature row, any
              envelope/document status change and their audit rows are all
              committed together.
            - On failure, nothing is written.

        Raises:
            ArtifactMissingError: SIGN without an artifact reference.
            SignerNotFoundError: Unknown signer.
            InvalidStateError: Envelope terminal, or past its expiry.
            AlreadyActedError: Signer already signed or declined.
            ConflictError / StorageFailureError: From the transaction runner.
        """
        outcome = SignerOutcome(outcome)
        if outcome == SignerOutcome.SIGN and not (artifact_ref or "").strip():
            raise ArtifactMissingError(str(signer_id))
        method = parse_signature_method(signature_method) if signature_method else None

        def _act(uow: UnitOfWork) -> SignerActionResult:
            document_id = EnvelopeSelector(uow.session).signer_document_id(signer_id)
            document, envelope = uow.lock_envelope_family(document_id)
            signer = next((s for s in envelope.signers if s.id == signer_id), None)
            if signer is None:
                raise SignerNotFoundError(str(signer_id))

            if is_terminal(envelope.status):
                raise InvalidStateError(
                    "Envelope", str(envelope.id), envelope.status.value,
                    "envelope no longer accepts signer actions",
                )
            if is_expired(envelope.expires_at, uow.now):
                raise InvalidStateError(
                    "Envelope", str(envelope.id), envelope.status.value,
                    "envelope has expired",
                )
            if signer.status != SignerStatus.PENDING:
                raise AlreadyActedError(str(signer.id), signer.status.value)

            actor = f"signer:{signer.id}"
            if outcome == SignerOutcome.SIGN:
                used_method = method or signer.signature_method
                uow.session.add(
                    Signature(
                        id=uuid4(),
                        signer_id=signer.id,
                        envelope_id=envelope.id,
                        artifact_ref=artifact_ref.strip(),
                        method=used_method,
                        signed_at=uow.now,
                        ip_address=ip_address,
                    )
                )
                transition_signer(uow, signer, SignerStatus.SIGNED, actor)
                signer_action = AuditAction.SIGNER_SIGNED
                details = {"signature_method": used_method}
            else:
                transition_signer(uow, signer, SignerStatus.DECLINED, actor)
                signer.decline_reason = reason
                signer_action = AuditAction.SIGNER_DECLINED
                details = {"reason": reason}
            uow.session.flush()

            audit_rows = [
                uow.auditor.record_signer_action(
                    signer,
                    signer_action,
                    actor,
                    document_id=document.id,
                    details=details,
                    ip_address=ip_address,
                )
            ]

            derived = derive_envelope_status(
                envelope.signer_statuses(),
                uow.now,
                envelope.expires_at,
                envelope.status,
            )
            if derived != envelope.status:
                from_status = transition_envelope(uow, envelope, document, derived, actor)
                audit_rows.append(
                    uow.auditor.record_envelope_transition(
                        envelope,
                        _ENVELOPE_AUDIT_ACTION[derived],
                        actor,
                        from_status=from_status,
                        signer_id=signer.id,
                        ip_address=ip_address,
                    )
                )
                kind = _PUBLISHED_KINDS.get(derived)
                if kind is not None:
                    uow.emit(
                        TransitionEvent(
                            kind=kind,
                            organization_id=envelope.organization_id,
                            document_id=document.id,
                            envelope_id=envelope.id,
                            envelope_status=derived,
                            occurred_at=uow.now,
                            signer_id=signer.id,
                        )
                    )

            return SignerActionResult(
                signer_id=signer.id,
                envelope_id=envelope.id,
                document_id=document.id,
                signer_status=signer.status,
                envelope_status=envelope.status,
                document_status=document.status,
                audit_entries=tuple(to_ref(r) for r in audit_rows),
            )

        with LogContext.for_signer(signer_id):
            try:
                result = self._runner.run(f"signer_{outcome.value.lower()}", _act)
            except (AlreadyActedError, InvalidStateError) as exc:
                logger.info(
                    "signer_action_rejected",
                    extra={"outcome": outcome.value, "error_code": exc.code},
                )
                raise
            logger.info(
                "signer_action_committed",
                extra={
                    "outcome": outcome.value,
                    "envelope_id": str(result.envelope_id),
                    "envelope_status": result.envelope_status.value,
                    "document_status": result.document_status.value,
                },
            )
        return result
