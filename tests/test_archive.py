from __future__ import annotations

import asyncio
import zipfile
from pathlib import Path

import pytest

from image_jobs.services.archive import ArchiveBuilder
from image_jobs.services.errors import ArchiveError


def make_builder(tmp_path: Path) -> ArchiveBuilder:
    processed = tmp_path / "processed"
    processed.mkdir()
    return ArchiveBuilder(processed, tmp_path / "archives")


def test_archive_skips_missing_files(tmp_path: Path) -> None:
    builder = make_builder(tmp_path)
    (builder.processed_dir / "tool-compressed-a.jpg").write_bytes(b"a" * 50)

    result = asyncio.run(
        builder.build_archive([("tool-compressed-a.jpg", "beach.jpg"), ("tool-compressed-gone.jpg", "gone.jpg")])
    )

    assert result.filename.startswith("tool-compressed-images-")
    assert result.filename.endswith(".zip")
    assert result.path.parent == tmp_path / "archives"
    assert result.size == result.path.stat().st_size
    assert result.file_count == 1
    with zipfile.ZipFile(result.path) as archive:
        assert archive.namelist() == ["beach.jpg"]
        assert archive.read("beach.jpg") == b"a" * 50


def test_archive_deduplicates_display_names(tmp_path: Path) -> None:
    builder = make_builder(tmp_path)
    (builder.processed_dir / "tool-compressed-a.jpg").write_bytes(b"a")
    (builder.processed_dir / "tool-compressed-b.jpg").write_bytes(b"b")

    result = asyncio.run(
        builder.build_archive([("tool-compressed-a.jpg", "photo.jpg"), ("tool-compressed-b.jpg", "photo.jpg")])
    )

    with zipfile.ZipFile(result.path) as archive:
        assert sorted(archive.namelist()) == ["photo.jpg", "photo_1.jpg"]


def test_archive_ignores_path_traversal(tmp_path: Path) -> None:
    builder = make_builder(tmp_path)
    (tmp_path / "secret.txt").write_text("top secret")

    with pytest.raises(ArchiveError):
        asyncio.run(builder.build_archive([("../secret.txt", "secret.txt")]))


def test_archive_without_existing_files_fails(tmp_path: Path) -> None:
    builder = make_builder(tmp_path)

    with pytest.raises(ArchiveError):
        asyncio.run(builder.build_archive([("tool-compressed-none.jpg", "none.jpg")]))

    assert not (tmp_path / "archives").exists() or not any((tmp_path / "archives").iterdir())
