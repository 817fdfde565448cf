"""Services for the signflow kernel (write side)."""

from signflow_kernel.services.auditor_service import AuditorService
from signflow_kernel.services.completion_aggregator import CompletionAggregator
from signflow_kernel.services.document_service import DocumentService
from signflow_kernel.services.envelope_service import EnvelopeService
from signflow_kernel.services.notifications import (
    LoggingNotifier,
    NullNotifier,
    TransitionNotifier,
)
from signflow_kernel.services.sequence_service import SequenceService
from signflow_kernel.services.unit_of_work import TransactionRunner, UnitOfWork

__all__ = [
    "AuditorService",
    "CompletionAggregator",
    "DocumentService",
    "EnvelopeService",
    "LoggingNotifier",
    "NullNotifier",
    "SequenceService",
    "TransactionRunner",
    "TransitionNotifier",
    "UnitOfWork",
]
