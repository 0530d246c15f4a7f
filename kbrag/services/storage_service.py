from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Protocol

import aiofiles
import aiofiles.os

from kbrag.core.config import settings
from kbrag.utils.logger import get_logger

logger = get_logger("services.storage_service")


class ByteStream(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class BlobStore(Protocol):
    """Object storage capability. Adapters are interchangeable."""

    async def put(self, key: str, data: bytes) -> str: ...

    def open_stream(self, key: str) -> AsyncContextManager[ByteStream]: ...

    async def delete(self, key: str) -> None: ...


class LocalBlobStore:
    """Blob store backed by a local (or mounted) directory; keys map to relative paths."""

    def __init__(self, root: Path = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    async def put(self, key: str, data: bytes) -> str:
        """Store bytes under `key` and return the key."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as buffer:
            await buffer.write(data)
        logger.info(f"Stored blob {key} ({len(data)} bytes)")
        return key

    @asynccontextmanager
    async def open_stream(self, key: str) -> AsyncIterator[ByteStream]:
        async with aiofiles.open(self._path(key), "rb") as stream:
            yield stream

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            logger.info(f"Deleted blob {key}")
        else:
            logger.warning(f"Blob {key} already absent")
