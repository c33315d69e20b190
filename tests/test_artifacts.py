"""Тесты учёта временных файлов."""

from pathlib import Path

import pytest

from converter.services.artifacts import ArtifactStore, remove_path, remove_paths


def test_track_and_cleanup(tmp_path):
    upload = tmp_path / "upload.docx"
    upload.write_bytes(b"doc")
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    (scratch / "page-1.png").write_bytes(b"png")

    artifacts = ArtifactStore()
    artifacts.track(upload)
    artifacts.track(scratch)
    artifacts.track(upload)

    assert len(artifacts) == 2
    assert artifacts.cleanup_sync() == 2
    assert list(tmp_path.iterdir()) == []
    # Повторная очистка ничего не делает
    assert artifacts.cleanup_sync() == 0


def test_release_transfers_ownership(tmp_path):
    pdf = tmp_path / "result.pdf"
    pdf.write_bytes(b"%PDF")

    artifacts = ArtifactStore()
    artifacts.track(pdf)
    artifacts.release(pdf)

    assert pdf not in artifacts
    assert artifacts.cleanup_sync() == 0
    assert pdf.exists()


@pytest.mark.asyncio
async def test_async_cleanup(tmp_path):
    path = tmp_path / "a.png"
    path.write_bytes(b"png")

    artifacts = ArtifactStore()
    artifacts.track(path)

    assert await artifacts.cleanup() == 1
    assert not path.exists()
    assert await artifacts.cleanup() == 0


def test_remove_missing_path(tmp_path):
    assert remove_path(tmp_path / "missing.pdf") is False


def test_remove_errors_are_swallowed(tmp_path, monkeypatch):
    path = tmp_path / "locked.pdf"
    path.write_bytes(b"%PDF")

    def deny(self, missing_ok=False):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "unlink", deny)

    assert remove_path(path) is False
    assert remove_paths([path, tmp_path / "missing"]) == 0
