"""
Blob storage for uploaded samples.

The pipeline only needs two calls: put bytes and get a URL back, delete by
URL. Both must be safe to call from several in-flight files at once.
"""

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol

from sample_pipeline.utils.errors import ConfigurationError, StorageError, UploadError

AUDIO_SUBDIR = "audio"


class Storage(Protocol):
    """Async upload/delete interface."""

    async def put(self, data: bytes, filename: str = "") -> str:
        ...

    async def delete(self, url: str) -> None:
        ...


def _blob_name(filename: str) -> str:
    """Random name that keeps the original extension."""
    return f"{uuid.uuid4()}{PurePosixPath(filename).suffix.lower()}"


class InMemoryStorage:
    """
    Dict-backed storage for tests and dry runs.

    URLs look like ``memory://audio/<uuid>.<ext>``.
    """

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger("storage.memory")

    async def put(self, data: bytes, filename: str = "") -> str:
        url = f"memory://{AUDIO_SUBDIR}/{_blob_name(filename)}"
        async with self._lock:
            self._blobs[url] = bytes(data)
        self.logger.debug(f"Stored {len(data)} bytes at {url}")
        return url

    async def delete(self, url: str) -> None:
        async with self._lock:
            if url not in self._blobs:
                raise StorageError(f"No such blob: {url}", url=url)
            del self._blobs[url]
        self.logger.debug(f"Deleted {url}")

    def __contains__(self, url: str) -> bool:
        return url in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)

    @property
    def urls(self) -> list:
        return list(self._blobs)


class LocalFileStorage:
    """
    Stores uploads under ``<root>/audio/`` and serves them from ``base_url``.

    File writes are blocking, so they run on the loop's default executor.
    """

    def __init__(self, root: Path, base_url: str = "/uploads"):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip('/')
        self.logger = logging.getLogger("storage.local")
        (self.root / AUDIO_SUBDIR).mkdir(parents=True, exist_ok=True)

    async def put(self, data: bytes, filename: str = "") -> str:
        relative = f"{AUDIO_SUBDIR}/{_blob_name(filename)}"
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, relative, data)
        except OSError as e:
            raise UploadError(f"Failed to save file: {e}") from e

        url = f"{self.base_url}/{relative}"
        self.logger.debug(f"Saved {len(data)} bytes to {url}")
        return url

    async def delete(self, url: str) -> None:
        path = self._path_for(url)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, path.unlink)
        except OSError as e:
            raise StorageError(f"Failed to delete file: {e}", url=url) from e
        self.logger.debug(f"Deleted {url}")

    def _write(self, relative: str, data: bytes) -> None:
        path = self.root / relative
        path.write_bytes(data)
        if path.stat().st_size != len(data):
            raise OSError(f"Short write for {path}")

    def _path_for(self, url: str) -> Path:
        if not url.startswith(self.base_url + '/'):
            raise StorageError(f"URL is not served by this storage: {url}", url=url)
        relative = url[len(self.base_url) + 1:]
        path = (self.root / relative).resolve()
        if self.root not in path.parents:
            raise StorageError(f"URL escapes the storage root: {url}", url=url)
        return path


def create_storage(config: Optional[Dict[str, Any]] = None) -> Storage:
    """
    Factory function to create storage from the ``storage`` config section.
    """
    if config is None:
        config = {}

    backend = config.get('backend', 'local')
    if backend == 'memory':
        return InMemoryStorage()
    if backend == 'local':
        return LocalFileStorage(
            root=Path(config.get('root', 'uploads')),
            base_url=config.get('base_url', '/uploads'),
        )
    raise ConfigurationError(f"Unknown storage backend: {backend}", config_key='storage.backend')
