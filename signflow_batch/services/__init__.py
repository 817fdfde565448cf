"""Sweep services: artifact store, sweeps and scheduler."""

from signflow_batch.services.archival_sweep import ArchivalSweep
from signflow_batch.services.artifact_store import (
    ArchivedArtifact,
    ArtifactStore,
    LocalArtifactStore,
)
from signflow_batch.services.expiration_sweep import ExpirationSweep
from signflow_batch.services.scheduler import SweepScheduler
from signflow_batch.services.sweep import ReconciliationSweep

__all__ = [
    "ArchivalSweep",
    "ArchivedArtifact",
    "ArtifactStore",
    "ExpirationSweep",
    "LocalArtifactStore",
    "ReconciliationSweep",
    "SweepScheduler",
]
