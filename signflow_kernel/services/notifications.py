"""
Post-commit transition notification port.

The kernel publishes a TransitionEvent for every committed envelope
transition that outside parties care about (sent, completed, declined,
revoked, expired, archived, invitation resent).  Webhook delivery, email
and the like live behind this port and are never part of the transaction.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from signflow_kernel.domain.dtos import TransitionEvent
from signflow_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class TransitionNotifier(Protocol):
    """Receives committed transitions.  Must not assume a transaction is open."""

    def notify(self, event: TransitionEvent) -> None: ...


class NullNotifier:
    """Discards events."""

    def notify(self, event: TransitionEvent) -> None:
        return None


class LoggingNotifier:
    """Logs each committed transition as ``transition_published``."""

    def notify(self, event: TransitionEvent) -> None:
        logger.info(
            "transition_published",
            extra={
                "kind": event.kind,
                "organization_id": str(event.organization_id),
                "document_id": str(event.document_id),
                "envelope_id": str(event.envelope_id),
                "envelope_status": event.envelope_status.value,
            },
        )
