"""Local-disk storage for uploaded PDFs."""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from uuid import UUID

from contractflow.core.config import settings
from contractflow.core.exceptions import FileStorageError, StoredFileNotFoundError
from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_FILENAME = "contract.pdf"


@dataclass
class StoredPdf:
    path: str
    size_bytes: int


def safe_filename(filename: Optional[str]) -> str:
    """Reduce an upload filename to ``[A-Za-z0-9._-]`` with no leading dots."""
    if not filename:
        return DEFAULT_FILENAME
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    return re.sub(r"^\.+", "_", cleaned)


class PdfStorage:
    """Stores PDFs under ``<base_dir>/<workflow_id>/<safe filename>``."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.pipeline.pdf_storage_dir)

    async def store(self, pdf_bytes: bytes, workflow_id: UUID, filename: Optional[str] = None) -> StoredPdf:
        """Write the PDF to disk.

        Raises:
            FileStorageError: If the file cannot be written
        """
        path = self.base_dir / str(workflow_id) / safe_filename(filename)
        try:
            await asyncio.to_thread(self._write, path, pdf_bytes)
        except OSError as e:
            LOGGER.error(
                f"Failed to write PDF to storage: {e}",
                extra={"workflow_id": str(workflow_id), "error_code": FileStorageError.code, "retryable": True},
            )
            raise FileStorageError("Failed to store PDF file", details=str(e), original_error=e) from e

        LOGGER.info(
            "PDF stored",
            extra={"workflow_id": str(workflow_id), "path": str(path), "size_bytes": len(pdf_bytes)},
        )
        return StoredPdf(path=str(path), size_bytes=len(pdf_bytes))

    async def read(self, storage_path: str, workflow_id: Optional[UUID] = None) -> bytes:
        """Read a stored PDF back.

        Raises:
            StoredFileNotFoundError: If nothing can be read at the path
        """
        try:
            return await asyncio.to_thread(Path(storage_path).read_bytes)
        except OSError as e:
            LOGGER.error(
                f"PDF file not found at {storage_path}",
                extra={"workflow_id": str(workflow_id) if workflow_id else None,
                       "error_code": StoredFileNotFoundError.code},
            )
            raise StoredFileNotFoundError(
                "PDF file not found at storage path", details=str(e), original_error=e
            ) from e

    @staticmethod
    def _write(path: Path, pdf_bytes: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(pdf_bytes)
