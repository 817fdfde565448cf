"""
Module: signflow_kernel.selectors.audit_selector
Responsibility: Read access to the audit trail: one document's chain in commit
    order, a cross-document scan in timestamp order, and the terminal
    transitions a webhook dispatcher polls for.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from signflow_kernel.domain.dtos import AuditCursor, AuditEntryView
from signflow_kernel.domain.statuses import AuditAction
from signflow_kernel.models.audit_log import AuditLog
from signflow_kernel.selectors.base import BaseSelector
from signflow_kernel.selectors.envelope_selector import audit_entry_view

TERMINAL_TRANSITION_ACTIONS: tuple[AuditAction, ...] = (
    AuditAction.ENVELOPE_COMPLETED,
    AuditAction.ENVELOPE_DECLINED,
    AuditAction.ENVELOPE_REVOKED,
    AuditAction.ENVELOPE_EXPIRED,
    AuditAction.DOCUMENT_ARCHIVED,
)


class AuditSelector(BaseSelector[AuditLog]):
    """Read-only queries over AuditLog rows."""

    def trail(self, document_id: UUID) -> list[AuditEntryView]:
        """Every row of one document, in commit (seq) order."""
        rows = self.session.execute(
            select(AuditLog)
            .where(AuditLog.document_id == document_id)
            .order_by(AuditLog.seq)
        ).scalars()
        return [audit_entry_view(r) for r in rows]

    def scan(
        self,
        after: AuditCursor | None = None,
        limit: int = 500,
        actions: tuple[AuditAction, ...] | None = None,
        settled_before: datetime | None = None,
    ) -> list[AuditEntryView]:
        """
        Rows across documents ordered by (occurred_at, document_id, seq).

        ``after`` resumes strictly past the last row a poller consumed, so rows
        sharing a timestamp are neither skipped nor repeated between pages.
        ``settled_before`` hides rows stamped at or after it; a poller passes
        ``now - settle window`` so a transaction that committed late with an
        earlier timestamp is still ahead of its cursor.
        """
        stmt = select(AuditLog)
        if after is not None:
            stmt = stmt.where(
                or_(
                    AuditLog.occurred_at > after.occurred_at,
                    and_(
                        AuditLog.occurred_at == after.occurred_at,
                        AuditLog.document_id > after.document_id,
                    ),
                    and_(
                        AuditLog.occurred_at == after.occurred_at,
                        AuditLog.document_id == after.document_id,
                        AuditLog.seq > after.seq,
                    ),
                )
            )
        if settled_before is not None:
            stmt = stmt.where(AuditLog.occurred_at < settled_before)
        if actions:
            stmt = stmt.where(AuditLog.action.in_(actions))
        stmt = stmt.order_by(AuditLog.occurred_at, AuditLog.document_id, AuditLog.seq).limit(limit)
        return [audit_entry_view(r) for r in self.session.execute(stmt).scalars()]

    def terminal_transitions(
        self,
        after: AuditCursor | None = None,
        limit: int = 500,
        settled_before: datetime | None = None,
    ) -> list[AuditEntryView]:
        """Completed / declined / revoked / expired / archived rows past ``after``."""
        return self.scan(
            after=after,
            limit=limit,
            actions=TERMINAL_TRANSITION_ACTIONS,
            settled_before=settled_before,
        )

    def count_for(self, document_id: UUID, action: AuditAction | None = None) -> int:
        stmt = select(func.count()).select_from(AuditLog).where(AuditLog.document_id == document_id)
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        return self.session.execute(stmt).scalar_one()
