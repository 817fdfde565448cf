"""
DocumentService -- document upload and organization-scoped reads.

Responsibility:
    Registers an uploaded file (already placed in the artifact store by the
    upload surface) as a DRAFT document of an organization and starts its
    audit chain with DOCUMENT_UPLOADED.

Architecture position:
    Kernel > Services -- imperative shell over TransactionRunner.
"""

from __future__ import annotations

from uuid import UUID

from signflow_kernel.domain.dtos import DocumentView
from signflow_kernel.domain.statuses import DocumentStatus
from signflow_kernel.exceptions import InvalidDocumentError
from signflow_kernel.logging_config import get_logger
from signflow_kernel.models.document import Document
from signflow_kernel.selectors.envelope_selector import EnvelopeSelector, document_view
from signflow_kernel.services.unit_of_work import TransactionRunner, UnitOfWork

logger = get_logger("services.document")


class DocumentService:
    """Creates and reads documents, scoped by organization."""

    def __init__(self, runner: TransactionRunner):
        self._runner = runner

    def upload_document(
        self,
        organization_id: UUID,
        title: str,
        file_ref: str,
        actor: str,
    ) -> DocumentView:
        """
        Register an uploaded file as a DRAFT document.

        Raises:
            InvalidDocumentError: Blank title or file reference.
        """
        title = (title or "").strip()
        file_ref = (file_ref or "").strip()
        if not title:
            raise InvalidDocumentError("title is required")
        if not file_ref:
            raise InvalidDocumentError("file reference is required")

        def _upload(uow: UnitOfWork) -> DocumentView:
            document = Document(
                organization_id=organization_id,
                title=title,
                file_ref=file_ref,
                status=DocumentStatus.DRAFT,
                created_at=uow.now,
                updated_at=uow.now,
                created_by=actor,
            )
            uow.session.add(document)
            uow.session.flush()
            uow.auditor.record_document_uploaded(document, actor)
            return document_view(document)

        view = self._runner.run("upload_document", _upload)
        logger.info(
            "document_uploaded",
            extra={
                "document_id": str(view.document_id),
                "organization_id": str(organization_id),
            },
        )
        return view

    def get_document(self, organization_id: UUID, document_id: UUID) -> DocumentView:
        """
        Raises:
            DocumentNotFoundError: Unknown id, or owned by another organization.
        """
        return self._runner.read(
            lambda session: EnvelopeSelector(session).get_document(document_id, organization_id)
        )

    def list_documents(
        self,
        organization_id: UUID,
        status: DocumentStatus | None = None,
        limit: int = 100,
    ) -> list[DocumentView]:
        return self._runner.read(
            lambda session: EnvelopeSelector(session).list_documents(
                organization_id, status=status, limit=limit
            )
        )
