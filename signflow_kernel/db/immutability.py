"""
ORM-Level Immutability Enforcement.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |                                                   ^
         v                                                   |
    [before_delete event] --> _check_*_delete() -------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, we raise ImmutabilityViolationError and the transaction
is aborted.  The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|------------------------------------------------------------
AuditLog        | ALWAYS immutable (no UPDATE, no DELETE)
Signature       | ALWAYS immutable (no UPDATE, no DELETE)
SignatureField  | No UPDATE; DELETE only while the envelope is unsent
Envelope        | Status changes must be listed in ENVELOPE_WORKFLOW; once
                | terminal, only audit metadata may change
Signer          | Same, against SIGNER_WORKFLOW
Document        | Same, against DOCUMENT_WORKFLOW

Audit metadata (updated_at, updated_by) and the optimistic ``version``
column are always allowed to change.

===============================================================================
LIMITATIONS
===============================================================================

Raw SQL and bulk ``update()``/``delete()`` statements bypass ORM events.
Kernel code never issues them against protected tables.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from signflow_kernel.domain.workflow import (
    DOCUMENT_WORKFLOW,
    ENVELOPE_WORKFLOW,
    SIGNER_WORKFLOW,
    Workflow,
)
from signflow_kernel.exceptions import ImmutabilityViolationError
from signflow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by", "version"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Append-only records
# =============================================================================


def _check_audit_log_update(mapper, connection, target):
    raise _blocked("AuditLog", target.id, "UPDATE", "Audit log rows are immutable")


def _check_audit_log_delete(mapper, connection, target):
    raise _blocked("AuditLog", target.id, "DELETE", "Audit log rows cannot be deleted")


def _check_signature_update(mapper, connection, target):
    raise _blocked("Signature", target.id, "UPDATE", "Signatures are immutable")


def _check_signature_delete(mapper, connection, target):
    raise _blocked("Signature", target.id, "DELETE", "Signatures cannot be deleted")


def _check_signature_field_update(mapper, connection, target):
    raise _blocked(
        "SignatureField", target.id, "UPDATE",
        "Signature fields cannot be modified; remove and place a new field",
    )


def _check_signature_field_delete(mapper, connection, target):
    """Allow removal only while the owning envelope has not been sent."""
    from signflow_kernel.domain.statuses import EnvelopeStatus
    from signflow_kernel.models.envelope import Envelope

    row = connection.execute(
        select(Envelope.status, Envelope.sent_at).where(Envelope.id == target.envelope_id)
    ).one_or_none()
    if row is None:
        return
    status, sent_at = row
    if sent_at is not None or status != EnvelopeStatus.PENDING:
        raise _blocked(
            "SignatureField", target.id, "DELETE",
            "Signature fields cannot be removed after the envelope was sent",
        )


# =============================================================================
# Status lifecycle
# =============================================================================


def _check_lifecycle(workflow: Workflow, entity_type: str, target) -> None:
    """
    Enforce the lifecycle table on a status column.

    Logic:
        1. Status changing: the (old, new) pair must be listed in ``workflow``.
        2. Status unchanged and terminal: only audit metadata may change.
    """
    status_history = get_history(target, "status")

    if status_history.deleted and status_history.added:
        old_status = status_history.deleted[0]
        new_status = status_history.added[0]
        if not workflow.allows(old_status, new_status):
            raise _blocked(
                entity_type, target.id, "UPDATE",
                f"Illegal status change {getattr(old_status, 'value', old_status)} -> "
                f"{getattr(new_status, 'value', new_status)}",
                from_status=str(getattr(old_status, "value", old_status)),
                to_status=str(getattr(new_status, "value", new_status)),
            )
        return

    if status_history.added:
        # Old value was never loaded; nothing to compare against.
        return

    if not workflow.is_terminal(target.status):
        return

    insp = inspect(target)
    column_keys = {c.key for c in insp.mapper.column_attrs}
    for attr in insp.attrs:
        if attr.key in AUDIT_METADATA_FIELDS or attr.key not in column_keys:
            continue
        if attr.history.has_changes():
            raise _blocked(
                entity_type, target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on a "
                f"{target.status.value} {entity_type.lower()}",
                field=attr.key,
            )


def _check_envelope_update(mapper, connection, target):
    _check_lifecycle(ENVELOPE_WORKFLOW, "Envelope", target)


def _check_signer_update(mapper, connection, target):
    _check_lifecycle(SIGNER_WORKFLOW, "Signer", target)


def _check_document_update(mapper, connection, target):
    _check_lifecycle(DOCUMENT_WORKFLOW, "Document", target)


def _check_record_delete(mapper, connection, target):
    raise _blocked(
        type(target).__name__, target.id, "DELETE",
        f"{type(target).__name__} records cannot be deleted",
    )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from signflow_kernel.models import (
        AuditLog,
        Document,
        Envelope,
        Signature,
        SignatureField,
        Signer,
    )

    return (
        (AuditLog, "before_update", _check_audit_log_update),
        (AuditLog, "before_delete", _check_audit_log_delete),
        (Signature, "before_update", _check_signature_update),
        (Signature, "before_delete", _check_signature_delete),
        (SignatureField, "before_update", _check_signature_field_update),
        (SignatureField, "before_delete", _check_signature_field_delete),
        (Envelope, "before_update", _check_envelope_update),
        (Envelope, "before_delete", _check_record_delete),
        (Signer, "before_update", _check_signer_update),
        (Signer, "before_delete", _check_record_delete),
        (Document, "before_update", _check_document_update),
        (Document, "before_delete", _check_record_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.  Called by
    ``init_engine_from_url()``.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally tamper with rows
    to verify detection (e.g. audit chain validation).
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
