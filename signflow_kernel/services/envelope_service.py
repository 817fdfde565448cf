"""
EnvelopeService -- envelope lifecycle operations outside signer actions.

Responsibility:
    Create, send, revoke; resend invitations; place and remove signature
    fields; read an envelope with its audit trail.  Each operation is one
    unit of work: lock the Document row, re-read the envelope family,
    decide, write status through the lifecycle helpers, append the audit
    row, commit.

Architecture position:
    Kernel > Services -- imperative shell over TransactionRunner.

Invariants enforced:
    - Organization scoping: an envelope, document, signer or field that
      belongs to another organization is reported as not found.
    - Fields can be placed or removed only while the envelope is PENDING
      and unsent.
    - Revocation moves every PENDING signer to REVOKED together with the
      envelope and document, under one audit row.

Failure modes:
    - NotFoundError subclasses, InvalidStateError, ValidationError
      subclasses; ConflictError/StorageFailureError from the runner.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select

from signflow_kernel.domain.dtos import (
    EnvelopeView,
    FieldSpec,
    SignatureFieldView,
    SignerSpec,
    SignerView,
    TransitionEvent,
)
from signflow_kernel.domain.state_machine import is_expired, is_terminal
from signflow_kernel.domain.statuses import (
    AuditAction,
    DocumentStatus,
    EnvelopeStatus,
    SignerStatus,
)
from signflow_kernel.domain.validation import (
    NormalizedField,
    normalize_field,
    normalize_signers,
    validate_expiry,
)
from signflow_kernel.exceptions import (
    DocumentNotFoundError,
    EnvelopeNotFoundError,
    InvalidSignatureFieldError,
    InvalidStateError,
    SignatureFieldNotFoundError,
    SignerNotFoundError,
)
from signflow_kernel.logging_config import LogContext, get_logger
from signflow_kernel.models.document import Document
from signflow_kernel.models.envelope import Envelope
from signflow_kernel.models.signer import SignatureField, Signer
from signflow_kernel.selectors.envelope_selector import (
    EnvelopeSelector,
    envelope_view,
    field_view,
    signer_view,
)
from signflow_kernel.services.lifecycle import transition_envelope, transition_signer
from signflow_kernel.services.unit_of_work import TransactionRunner, UnitOfWork

logger = get_logger("services.envelope")


def _event(kind: str, envelope: Envelope, uow: UnitOfWork, **kwargs) -> TransitionEvent:
    return TransitionEvent(
        kind=kind,
        organization_id=envelope.organization_id,
        document_id=envelope.document_id,
        envelope_id=envelope.id,
        envelope_status=envelope.status,
        occurred_at=uow.now,
        **kwargs,
    )


def _view_with_trail(uow: UnitOfWork, envelope: Envelope, document: Document) -> EnvelopeView:
    """Envelope view carrying the full audit trail, including this unit of work's rows."""
    uow.session.flush()
    rows = EnvelopeSelector(uow.session).audit_rows(document.id)
    return envelope_view(envelope, document, rows)


def _new_field(envelope_id: UUID, signer_id: UUID, spec: NormalizedField, now: datetime, actor: str):
    return SignatureField(
        id=uuid4(),
        envelope_id=envelope_id,
        signer_id=signer_id,
        page_number=spec.page_number,
        x=spec.x,
        y=spec.y,
        width=spec.width,
        height=spec.height,
        kind=spec.kind,
        created_at=now,
        updated_at=now,
        created_by=actor,
    )


class EnvelopeService:
    """
    Envelope lifecycle commands.

    Contract:
        Every method runs in its own transaction via the injected
        TransactionRunner and returns frozen views, never ORM instances.
    """

    def __init__(self, runner: TransactionRunner):
        self._runner = runner

    # -------------------------------------------------------------------------
    # Lookups (inside a unit of work)
    # -------------------------------------------------------------------------

    @staticmethod
    def _lock_envelope(
        uow: UnitOfWork,
        organization_id: UUID,
        envelope_id: UUID,
    ) -> tuple[Document, Envelope]:
        document_id = uow.session.execute(
            select(Envelope.document_id)
            .where(Envelope.id == envelope_id)
            .where(Envelope.organization_id == organization_id)
        ).scalar_one_or_none()
        if document_id is None:
            raise EnvelopeNotFoundError(str(envelope_id))
        return uow.lock_envelope_family(document_id)

    @staticmethod
    def _require_unsent(envelope: Envelope, reason: str) -> None:
        if envelope.status != EnvelopeStatus.PENDING or envelope.was_sent:
            raise InvalidStateError("Envelope", str(envelope.id), envelope.status.value, reason)

    @staticmethod
    def _require_open(envelope: Envelope, now: datetime) -> None:
        if is_terminal(envelope.status):
            raise InvalidStateError(
                "Envelope", str(envelope.id), envelope.status.value,
                "envelope is in a terminal state",
            )
        if is_expired(envelope.expires_at, now):
            raise InvalidStateError(
                "Envelope", str(envelope.id), envelope.status.value,
                "envelope has expired",
            )

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_envelope(
        self,
        organization_id: UUID,
        document_id: UUID,
        signers: Sequence[SignerSpec],
        actor: str,
        expires_at: datetime | None = None,
    ) -> EnvelopeView:
        """
        Wrap a DRAFT document in a new PENDING envelope.

        Raises:
            InvalidSignerError: No signers, bad or duplicate email.
            InvalidSignatureFieldError: Bad initial field placement.
            InvalidExpiryError: ``expires_at`` not in the future.
            DocumentNotFoundError: Unknown or foreign document.
            InvalidStateError: Document not DRAFT or already enveloped.
        """
        normalized = normalize_signers(signers)

        def _create(uow: UnitOfWork) -> EnvelopeView:
            validate_expiry(expires_at, uow.now)

            document = uow.lock_document(document_id)
            if document.organization_id != organization_id:
                raise DocumentNotFoundError(str(document_id))
            if document.status != DocumentStatus.DRAFT:
                raise InvalidStateError(
                    "Document", str(document_id), document.status.value,
                    "only DRAFT documents can be sent for signature",
                )
            existing = uow.session.execute(
                select(Envelope.id).where(Envelope.document_id == document_id)
            ).scalar_one_or_none()
            if existing is not None:
                raise InvalidStateError(
                    "Document", str(document_id), document.status.value,
                    f"document already has envelope {existing}",
                )

            envelope = Envelope(
                id=uuid4(),
                organization_id=organization_id,
                document_id=document_id,
                status=EnvelopeStatus.PENDING,
                expires_at=expires_at,
                created_at=uow.now,
                updated_at=uow.now,
                created_by=actor,
            )
            uow.session.add(envelope)
            field_count = 0
            for position, spec in enumerate(normalized):
                signer = Signer(
                    id=uuid4(),
                    position=position,
                    email=spec.email,
                    name=spec.name,
                    status=SignerStatus.PENDING,
                    signature_method=spec.signature_method,
                    created_at=uow.now,
                    updated_at=uow.now,
                    created_by=actor,
                )
                envelope.signers.append(signer)
                for field_spec in spec.fields:
                    signer.fields.append(_new_field(envelope.id, signer.id, field_spec, uow.now, actor))
                    field_count += 1
            uow.session.flush()

            uow.auditor.record_envelope_created(envelope, actor)
            if field_count:
                uow.auditor.record(
                    AuditAction.SIGNATURE_FIELDS_PLACED,
                    document_id=document_id,
                    envelope_id=envelope.id,
                    actor=actor,
                    details={"count": field_count},
                )
            uow.session.flush()
            return _view_with_trail(uow, envelope, document)

        view = self._runner.run("create_envelope", _create)
        logger.info(
            "envelope_created",
            extra={
                "envelope_id": str(view.envelope_id),
                "document_id": str(document_id),
                "signer_count": len(view.signers),
            },
        )
        return view

    def send_envelope(self, organization_id: UUID, envelope_id: UUID, actor: str) -> EnvelopeView:
        """
        Send an envelope to its signers: PENDING -> IN_PROGRESS, document SENT.

        Invitation delivery happens outside the kernel, driven by the
        ``envelope.sent`` event published after commit.

        Raises:
            EnvelopeNotFoundError: Unknown or foreign envelope.
            InvalidStateError: Already sent, terminal, or past its expiry.
        """

        def _send(uow: UnitOfWork) -> EnvelopeView:
            document, envelope = self._lock_envelope(uow, organization_id, envelope_id)
            self._require_open(envelope, uow.now)
            if envelope.was_sent:
                raise InvalidStateError(
                    "Envelope", str(envelope.id), envelope.status.value,
                    "envelope was already sent",
                )

            envelope.sent_at = uow.now
            if envelope.status == EnvelopeStatus.PENDING:
                from_status = transition_envelope(
                    uow, envelope, document, EnvelopeStatus.IN_PROGRESS, actor
                )
            else:
                # A signer acted before send; the envelope is IN_PROGRESS already.
                from_status = envelope.status
                envelope.touch(uow.now, actor)

            pending = [s for s in envelope.signers if s.status == SignerStatus.PENDING]
            for signer in pending:
                signer.invitation_count += 1
                signer.last_invited_at = uow.now
                signer.touch(uow.now, actor)

            uow.auditor.record_envelope_transition(
                envelope,
                AuditAction.ENVELOPE_SENT,
                actor,
                from_status=from_status,
                details={"invited": [s.email for s in pending]},
            )
            uow.emit(_event("envelope.sent", envelope, uow))
            return _view_with_trail(uow, envelope, document)

        with LogContext.for_envelope(envelope_id, actor=actor):
            view = self._runner.run("send_envelope", _send)
            logger.info("envelope_sent", extra={"document_id": str(view.document.document_id)})
        return view

    def revoke_envelope(
        self,
        organization_id: UUID,
        envelope_id: UUID,
        actor: str,
        reason: str | None = None,
    ) -> EnvelopeView:
        """
        Revoke an open envelope: envelope, document and PENDING signers -> REVOKED.

        Raises:
            EnvelopeNotFoundError: Unknown or foreign envelope.
            InvalidStateError: Envelope not PENDING / IN_PROGRESS.
        """

        def _revoke(uow: UnitOfWork) -> EnvelopeView:
            document, envelope = self._lock_envelope(uow, organization_id, envelope_id)
            if is_terminal(envelope.status):
                raise InvalidStateError(
                    "Envelope", str(envelope.id), envelope.status.value,
                    "only PENDING or IN_PROGRESS envelopes can be revoked",
                )

            revoked = [s for s in envelope.signers if s.status == SignerStatus.PENDING]
            for signer in revoked:
                transition_signer(uow, signer, SignerStatus.REVOKED, actor)
            from_status = transition_envelope(uow, envelope, document, EnvelopeStatus.REVOKED, actor)

            uow.auditor.record_envelope_transition(
                envelope,
                AuditAction.ENVELOPE_REVOKED,
                actor,
                from_status=from_status,
                details={
                    "reason": reason,
                    "revoked_signer_ids": [str(s.id) for s in revoked],
                },
            )
            uow.emit(_event("envelope.revoked", envelope, uow, details={"reason": reason}))
            return _view_with_trail(uow, envelope, document)

        with LogContext.for_envelope(envelope_id, actor=actor):
            view = self._runner.run("revoke_envelope", _revoke)
            logger.info("envelope_revoked", extra={"reason": reason})
        return view

    def resend_invitation(self, organization_id: UUID, signer_id: UUID, actor: str) -> SignerView:
        """
        Record a fresh invitation for a PENDING signer of a sent envelope.

        Raises:
            SignerNotFoundError: Unknown signer, or envelope of another organization.
            InvalidStateError: Envelope unsent, terminal or expired; signer not PENDING.
        """

        def _resend(uow: UnitOfWork) -> SignerView:
            document_id = EnvelopeSelector(uow.session).signer_document_id(signer_id)
            document, envelope = uow.lock_envelope_family(document_id)
            if envelope.organization_id != organization_id:
                raise SignerNotFoundError(str(signer_id))
            signer = next((s for s in envelope.signers if s.id == signer_id), None)
            if signer is None:
                raise SignerNotFoundError(str(signer_id))

            self._require_open(envelope, uow.now)
            if not envelope.was_sent:
                raise InvalidStateError(
                    "Envelope", str(envelope.id), envelope.status.value,
                    "envelope has not been sent yet",
                )
            if signer.status != SignerStatus.PENDING:
                raise InvalidStateError(
                    "Signer", str(signer.id), signer.status.value,
                    "can only resend invitations to pending signers",
                )

            signer.invitation_count += 1
            signer.last_invited_at = uow.now
            signer.touch(uow.now, actor)
            uow.auditor.record_signer_action(
                signer,
                AuditAction.INVITATION_RESENT,
                actor,
                document_id=document.id,
                details={"invitation_count": signer.invitation_count},
            )
            uow.emit(_event("signer.invitation_resent", envelope, uow, signer_id=signer.id))
            return signer_view(signer)

        with LogContext.for_signer(signer_id, actor=actor):
            view = self._runner.run("resend_invitation", _resend)
            logger.info("invitation_resent")
        return view

    def place_signature_fields(
        self,
        organization_id: UUID,
        envelope_id: UUID,
        fields: Sequence[FieldSpec],
        actor: str,
    ) -> tuple[SignatureFieldView, ...]:
        """
        Place fields for signers of an unsent envelope.

        Raises:
            InvalidSignatureFieldError: Empty list, missing signer id, bad geometry or kind.
            EnvelopeNotFoundError: Unknown or foreign envelope.
            SignerNotFoundError: A field names a signer outside the envelope.
            InvalidStateError: Envelope already sent or terminal.
        """
        if not fields:
            raise InvalidSignatureFieldError("at least one field is required")
        placements: list[tuple[UUID, NormalizedField]] = []
        for index, spec in enumerate(fields):
            if spec.signer_id is None:
                raise InvalidSignatureFieldError("signer id is required", index)
            placements.append((spec.signer_id, normalize_field(spec, index)))

        def _place(uow: UnitOfWork) -> tuple[SignatureFieldView, ...]:
            document, envelope = self._lock_envelope(uow, organization_id, envelope_id)
            self._require_unsent(envelope, "fields can only be placed before the envelope is sent")

            signer_ids = {s.id for s in envelope.signers}
            created = []
            for signer_id, spec in placements:
                if signer_id not in signer_ids:
                    raise SignerNotFoundError(str(signer_id))
                field = _new_field(envelope.id, signer_id, spec, uow.now, actor)
                uow.session.add(field)
                created.append(field)
            envelope.touch(uow.now, actor)
            uow.session.flush()

            uow.auditor.record(
                AuditAction.SIGNATURE_FIELDS_PLACED,
                document_id=document.id,
                envelope_id=envelope.id,
                actor=actor,
                details={"count": len(created), "field_ids": [str(f.id) for f in created]},
            )
            return tuple(field_view(f) for f in created)

        views = self._runner.run("place_signature_fields", _place)
        logger.info(
            "signature_fields_placed",
            extra={"envelope_id": str(envelope_id), "count": len(views)},
        )
        return views

    def remove_signature_field(self, organization_id: UUID, field_id: UUID, actor: str) -> None:
        """
        Remove a field from an unsent envelope.

        Raises:
            SignatureFieldNotFoundError: Unknown field, or envelope of another organization.
            InvalidStateError: Envelope already sent or terminal.
        """

        def _remove(uow: UnitOfWork) -> None:
            row = uow.session.execute(
                select(Envelope.document_id, Envelope.organization_id)
                .join(SignatureField, SignatureField.envelope_id == Envelope.id)
                .where(SignatureField.id == field_id)
            ).one_or_none()
            if row is None or row.organization_id != organization_id:
                raise SignatureFieldNotFoundError(str(field_id))

            document, envelope = uow.lock_envelope_family(row.document_id)
            field = uow.session.get(SignatureField, field_id, populate_existing=True)
            if field is None:
                raise SignatureFieldNotFoundError(str(field_id))
            self._require_unsent(envelope, "fields can only be removed before the envelope is sent")

            signer_id = field.signer_id
            uow.session.delete(field)
            envelope.touch(uow.now, actor)
            uow.session.flush()
            uow.auditor.record(
                AuditAction.SIGNATURE_FIELD_REMOVED,
                document_id=document.id,
                envelope_id=envelope.id,
                signer_id=signer_id,
                actor=actor,
                details={"field_id": str(field_id)},
            )

        self._runner.run("remove_signature_field", _remove)
        logger.info("signature_field_removed", extra={"field_id": str(field_id)})

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_envelope(
        self,
        organization_id: UUID,
        envelope_id: UUID,
        include_audit: bool = True,
    ) -> EnvelopeView:
        """
        Raises:
            EnvelopeNotFoundError: Unknown or foreign envelope.
        """
        return self._runner.read(
            lambda session: EnvelopeSelector(session).get_envelope(
                envelope_id, organization_id, include_audit=include_audit
            )
        )

    def list_envelopes(
        self,
        organization_id: UUID,
        status: EnvelopeStatus | None = None,
        limit: int = 100,
    ) -> list[EnvelopeView]:
        """An organization's envelopes (without audit trails), oldest first."""
        return self._runner.read(
            lambda session: EnvelopeSelector(session).list_envelopes(
                organization_id, status=status, limit=limit
            )
        )

    def get_signer(self, organization_id: UUID, signer_id: UUID) -> SignerView:
        """
        Raises:
            SignerNotFoundError: Unknown signer, or one of another organization.
        """
        return self._runner.read(
            lambda session: EnvelopeSelector(session).get_signer(signer_id, organization_id)
        )

    def list_signature_fields(
        self,
        organization_id: UUID,
        envelope_id: UUID,
    ) -> tuple[SignatureFieldView, ...]:
        view = self.get_envelope(organization_id, envelope_id, include_audit=False)
        return tuple(f for s in view.signers for f in s.fields)
