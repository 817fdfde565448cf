"""
Tests for LocalArtifactStore.
"""

import pytest

from signflow_kernel.exceptions import ArtifactStorageError

from signflow_batch.services.artifact_store import ArtifactStore, LocalArtifactStore


@pytest.fixture
def stored_file(artifact_root):
    path = artifact_root / "documents" / "lease.pdf"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"%PDF-1.7 lease")
    return "documents/lease.pdf"


def test_satisfies_protocol(artifact_store):
    assert isinstance(artifact_store, ArtifactStore)


def test_archive_moves_file(artifact_store, artifact_root, stored_file):
    result = artifact_store.archive(stored_file)

    assert result.moved
    assert result.file_ref == stored_file
    assert result.archived_ref == "archives/documents/lease.pdf"
    assert not (artifact_root / stored_file).exists()
    assert (artifact_root / "archives" / "documents" / "lease.pdf").read_bytes() == b"%PDF-1.7 lease"


def test_archive_twice_reports_existing_copy(artifact_store, stored_file):
    first = artifact_store.archive(stored_file)
    second = artifact_store.archive(stored_file)

    assert not second.moved
    assert second.archived_ref == first.archived_ref


def test_missing_artifact(artifact_store):
    with pytest.raises(ArtifactStorageError) as exc_info:
        artifact_store.archive("documents/nope.pdf")
    assert exc_info.value.artifact_ref == "documents/nope.pdf"
    assert exc_info.value.code == "ARTIFACT_STORAGE_FAILURE"


@pytest.mark.parametrize("ref", ["", "/etc/passwd", "../outside.pdf", "documents/../../x.pdf"])
def test_rejects_refs_outside_root(artifact_store, ref):
    with pytest.raises(ArtifactStorageError):
        artifact_store.archive(ref)


def test_custom_archive_subdir(artifact_root, stored_file):
    store = LocalArtifactStore(artifact_root, archive_subdir="cold")

    result = store.archive(stored_file)

    assert result.archived_ref == "cold/documents/lease.pdf"
    assert (artifact_root / "cold" / "documents" / "lease.pdf").exists()
