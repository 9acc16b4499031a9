"""Unit tests for attachment blob storage."""

from __future__ import annotations

from pathlib import Path

import pytest

from headless_pm.errors import InvalidInputError
from headless_pm.storage import AttachmentStorage, sanitize_filename


@pytest.fixture
def storage(tmp_path: Path) -> AttachmentStorage:
    return AttachmentStorage(tmp_path / "uploads", max_upload_mb=1)


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        ("raw", "clean"),
        [
            ("design.pdf", "design.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\me\\notes.txt", "notes.txt"),
            ("  spaced.md ", "spaced.md"),
        ],
    )
    def test_basename(self, raw: str, clean: str) -> None:
        assert sanitize_filename(raw) == clean

    @pytest.mark.parametrize("raw", ["", "..", "dir/", "   "])
    def test_unusable(self, raw: str) -> None:
        with pytest.raises(InvalidInputError):
            sanitize_filename(raw)


class TestAttachmentStorage:
    def test_save_layout(self, storage: AttachmentStorage) -> None:
        path = storage.save(1, 7, "design.pdf", b"%PDF")
        assert path == "project_1/task_7/7_design.pdf"
        assert (storage.upload_dir / path).read_bytes() == b"%PDF"
        assert storage.read(path) == b"%PDF"

    def test_same_name_gets_own_blob(self, storage: AttachmentStorage) -> None:
        first = storage.save(1, 7, "design.pdf", b"v1")
        second = storage.save(1, 7, "design.pdf", b"v2")
        third = storage.save(1, 7, "design.pdf", b"v3")
        assert [first, second, third] == [
            "project_1/task_7/7_design.pdf",
            "project_1/task_7/7_design_2.pdf",
            "project_1/task_7/7_design_3.pdf",
        ]
        assert storage.read(first) == b"v1"

        storage.delete(second)
        assert storage.read(first) == b"v1"
        assert storage.read(third) == b"v3"

    def test_oversize_rejected(self, storage: AttachmentStorage) -> None:
        with pytest.raises(InvalidInputError):
            storage.save(1, 7, "big.bin", b"x" * (1024 * 1024 + 1))

    def test_resolve_rejects_escape(self, storage: AttachmentStorage) -> None:
        with pytest.raises(InvalidInputError):
            storage.resolve("../outside.txt")

    def test_delete(self, storage: AttachmentStorage) -> None:
        path = storage.save(1, 7, "a.txt", b"a")
        assert storage.delete(path) is True
        assert storage.delete(path) is False

    def test_delete_many(self, storage: AttachmentStorage) -> None:
        paths = [storage.save(1, 7, f"{n}.txt", b"n") for n in ("a", "b")]
        assert storage.delete_many([*paths, "project_1/task_7/7_missing.txt"]) == 2
