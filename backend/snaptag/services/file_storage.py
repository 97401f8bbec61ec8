"""Blob storage abstraction.

``StorageAdapter`` is the contract the core depends on. ``LocalFileStorage``
keeps blobs on local disk and hands out URLs served by the /api/storage route,
optionally HMAC-signed with a bounded lifetime. Callers must be ready to
refresh a signed URL before re-using it (e.g. before re-submitting an image to
the AI adapter).
"""
import hashlib
import hmac
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class StorageAdapter(ABC):
    """Uploads, downloads and deletes byte blobs addressed by a path."""

    @abstractmethod
    async def upload(self, content: bytes, path: str, content_type: str) -> str:
        """Store bytes at path. Returns a retrievable URL."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        pass

    async def delete_many(self, paths: Sequence[str]) -> None:
        """Delete several objects. Default: one delete per path."""
        for path in paths:
            await self.delete(path)

    @abstractmethod
    async def get_url(self, path: str) -> str:
        """Return a fresh retrievable URL (may be signed and expire)."""


def sign_path(signing_key: str, path: str, expires: int) -> str:
    message = f"{path}:{expires}".encode("utf-8")
    return hmac.new(signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(signing_key: str, path: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
    """Check a signed storage URL. Expired or tampered URLs are rejected."""
    if expires < (now if now is not None else time.time()):
        return False
    expected = sign_path(signing_key, path, expires)
    return hmac.compare_digest(expected, signature)


class LocalFileStorage(StorageAdapter):
    """Handles blob read/write under a root directory on local disk."""

    def __init__(
        self,
        base_path: str,
        public_base_url: str,
        signing_key: str = "",
        url_ttl_seconds: int = 3600,
    ):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.signing_key = signing_key
        self.url_ttl_seconds = url_ttl_seconds

    def resolve(self, path: str) -> Path:
        """Map a storage path to a file under the root. Refuses traversal."""
        target = (self.base_path / path).resolve()
        if target == self.base_path or not target.is_relative_to(self.base_path):
            raise ValueError(f"Storage path escapes storage root: {path}")
        return target

    async def upload(self, content: bytes, path: str, content_type: str) -> str:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(content)
        logger.debug("Stored %d bytes at %s (%s)", len(content), path, content_type)
        return await self.get_url(path)

    async def download(self, path: str) -> bytes:
        target = self.resolve(path)
        async with aiofiles.open(target, "rb") as f:
            return await f.read()

    async def delete(self, path: str) -> None:
        target = self.resolve(path)
        if target.exists():
            await aiofiles.os.remove(target)

    async def delete_many(self, paths: Sequence[str]) -> None:
        failed = []
        for path in paths:
            try:
                await self.delete(path)
            except (OSError, ValueError) as e:
                failed.append(f"{path} ({e})")
        if failed:
            raise OSError(f"Bulk storage delete failed for {len(failed)} object(s): {', '.join(failed)}")

    async def get_url(self, path: str) -> str:
        url = f"{self.public_base_url}/{quote(path)}"
        if not self.signing_key:
            return url
        expires = int(time.time()) + self.url_ttl_seconds
        query = urlencode({"expires": expires, "signature": sign_path(self.signing_key, path, expires)})
        return f"{url}?{query}"

    def exists(self, path: str) -> bool:
        try:
            return os.path.isfile(self.resolve(path))
        except ValueError:
            return False
