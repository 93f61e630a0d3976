"""
Blob storage for uploaded documents

The engine only needs existence checks and byte reads; writes happen once at
upload. Files live under STORAGE_PATH in date-partitioned folders keyed by the
document id.
"""
import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol
from uuid import UUID

import structlog

from packages.common.config import settings
from packages.common.errors import ExtractionError

logger = structlog.get_logger()


EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/tiff": ".tiff",
}


def build_path(document_id: UUID, mime_type: str) -> str:
    """Relative storage key: YYYY/MM/<document_id>.<ext>"""
    now = datetime.now(timezone.utc)
    ext = EXTENSIONS.get(mime_type, ".bin")
    return f"{now:%Y}/{now:%m}/{document_id}{ext}"


class BlobStorage(Protocol):
    """Storage collaborator contract"""

    async def exists(self, path: str) -> bool:
        ...

    async def read(self, path: str) -> bytes:
        ...

    async def write(self, path: str, content: bytes) -> None:
        ...


class LocalBlobStorage:
    """Filesystem-backed storage; blocking IO runs in a worker thread"""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.storage_path)

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise ExtractionError("Storage path escapes the storage root", path=path)
        return full

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def read(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except FileNotFoundError as e:
            raise ExtractionError("Stored file not found", path=path) from e
        except OSError as e:
            raise ExtractionError(f"Failed to read stored file: {e}", path=path) from e

    async def write(self, path: str, content: bytes) -> None:
        full = self._resolve(path)

        def _write():
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info("document_stored", path=path, size_bytes=len(content))


storage = LocalBlobStorage()
