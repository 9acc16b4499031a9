"""Attachment blob storage for Headless PM.

Blobs live under the configured upload directory at
``project_{pid}/task_{tid}/{tid}_{filename}``; database rows store the
path relative to the upload directory. A second upload of the same name
to the same task is stored as ``{tid}_{stem}_2{suffix}`` and so on, so
every row owns its own blob.

Example usage:
    >>> storage = AttachmentStorage(Path("./data/uploads"))
    >>> path = storage.save(1, 7, "design.pdf", b"%PDF-1.7")
    >>> path
    'project_1/task_7/7_design.pdf'
    >>> storage.delete(path)
    True
"""

from __future__ import annotations

from pathlib import Path, PurePath

import structlog

from headless_pm.errors import InvalidInputError, StorageError

logger = structlog.get_logger(__name__)


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe basename.

    Raises:
        InvalidInputError: If nothing usable remains.
    """
    name = PurePath(filename.replace("\\", "/")).name.strip()
    if name in ("", ".", ".."):
        raise InvalidInputError("A valid filename is required", field="filename")
    return name


class AttachmentStorage:
    """Filesystem store for attachment blobs.

    Attributes:
        upload_dir: Root directory of all blobs.
        max_bytes: Largest accepted blob.
    """

    def __init__(self, upload_dir: Path, max_upload_mb: int = 32) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_upload_mb * 1024 * 1024

    def resolve(self, relative_path: str) -> Path:
        """Absolute location of a stored blob.

        Raises:
            InvalidInputError: If the path escapes the upload directory.
        """
        root = self.upload_dir.resolve()
        target = (root / relative_path).resolve()
        if not target.is_relative_to(root):
            raise InvalidInputError("Invalid attachment path", field="path")
        return target

    def save(self, project_id: int, task_id: int, filename: str, data: bytes) -> str:
        """Write a blob and return its path relative to the upload directory.

        Raises:
            InvalidInputError: On unusable filenames or oversized blobs.
            StorageError: If the file cannot be written.
        """
        if len(data) > self.max_bytes:
            raise InvalidInputError(
                f"Attachment exceeds the {self.max_bytes // (1024 * 1024)} MB limit",
                field="content_base64",
            )
        name = PurePath(sanitize_filename(filename))
        candidate = name.name
        copy = 1
        while True:
            relative = f"project_{project_id}/task_{task_id}/{task_id}_{candidate}"
            target = self.resolve(relative)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                # Exclusive create claims the name even against a concurrent upload
                with target.open("xb") as fh:
                    fh.write(data)
                break
            except FileExistsError:
                copy += 1
                candidate = f"{name.stem}_{copy}{name.suffix}"
            except OSError as e:
                logger.error("attachment_write_failed", path=relative, error=str(e))
                raise StorageError("Failed to store attachment") from e

        logger.info("attachment_stored", path=relative, size=len(data))
        return relative

    def read(self, relative_path: str) -> bytes:
        """Read a stored blob.

        Raises:
            StorageError: If the file cannot be read.
        """
        try:
            return self.resolve(relative_path).read_bytes()
        except OSError as e:
            raise StorageError("Failed to read attachment") from e

    def delete(self, relative_path: str) -> bool:
        """Delete a blob; returns whether a file was removed.

        Missing files are not an error. Other failures are logged and
        reported as False so that a committed row delete is never undone.
        """
        try:
            self.resolve(relative_path).unlink()
        except FileNotFoundError:
            return False
        except (OSError, InvalidInputError) as e:
            logger.warning("attachment_delete_failed", path=relative_path, error=str(e))
            return False
        logger.info("attachment_deleted", path=relative_path)
        return True

    def delete_many(self, relative_paths: list[str]) -> int:
        """Delete several blobs; returns how many files were removed."""
        return sum(1 for path in relative_paths if self.delete(path))
