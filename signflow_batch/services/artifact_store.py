"""
ArtifactStore -- the archival-storage collaborator used by the archival sweep.

Contract:
    ``archive(ref)`` moves a document file into archival storage and returns
    the archived reference.  It is idempotent: archiving a ref whose file has
    already been moved reports the existing archived copy and moves nothing.
    The sweep calls it outside any database transaction, so a crash between
    the move and the status commit is repaired by simply re-running.

Architecture: signflow_batch/services.  File I/O only; no database access.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from signflow_kernel.exceptions import ArtifactStorageError
from signflow_kernel.logging_config import get_logger

logger = get_logger("batch.artifact_store")


@dataclass(frozen=True)
class ArchivedArtifact:
    """Result of ``ArtifactStore.archive()``."""

    file_ref: str
    archived_ref: str
    moved: bool  # False when the artifact was already in the archive


@runtime_checkable
class ArtifactStore(Protocol):
    """Protocol for archival storage backends."""

    def archive(self, file_ref: str) -> ArchivedArtifact: ...


class LocalArtifactStore:
    """
    Directory-tree artifact store.

    ``<root>/<file_ref>`` is archived to ``<root>/<archive_subdir>/<file_ref>``.
    File refs are relative POSIX paths; absolute refs and refs that climb
    out of the root are rejected.
    """

    def __init__(self, root: str | Path, archive_subdir: str = "archives"):
        self._root = Path(root)
        self._archive_subdir = archive_subdir

    @property
    def root(self) -> Path:
        return self._root

    def archived_ref_for(self, file_ref: str) -> str:
        return str(PurePosixPath(self._archive_subdir) / self._relative(file_ref))

    def path_for(self, ref: str) -> Path:
        return self._root.joinpath(*self._relative(ref).parts)

    def _relative(self, ref: str) -> PurePosixPath:
        path = PurePosixPath(ref)
        if not ref or path.is_absolute() or ".." in path.parts:
            raise ArtifactStorageError(ref, "file reference must be a relative path inside the store")
        return path

    def archive(self, file_ref: str) -> ArchivedArtifact:
        """
        Move ``file_ref`` into the archive directory.

        Raises:
            ArtifactStorageError: Bad ref, neither the source nor the archived
                copy exists, or the filesystem move failed.
        """
        archived_ref = self.archived_ref_for(file_ref)
        source = self.path_for(file_ref)
        target = self.path_for(archived_ref)

        if not source.exists():
            if target.exists():
                logger.info(
                    "artifact_already_archived",
                    extra={"file_ref": file_ref, "archived_ref": archived_ref},
                )
                return ArchivedArtifact(file_ref, archived_ref, moved=False)
            raise ArtifactStorageError(file_ref, "artifact not found in store or archive")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as exc:
            raise ArtifactStorageError(file_ref, str(exc)) from exc

        logger.info(
            "artifact_archived",
            extra={"file_ref": file_ref, "archived_ref": archived_ref},
        )
        return ArchivedArtifact(file_ref, archived_ref, moved=True)
