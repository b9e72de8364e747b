"""Local filesystem storage for generated images."""

import asyncio
import base64
import binascii
import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from knowledge_search.config import settings

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 10 * 1024 * 1024  # bytes
DOWNLOAD_TIMEOUT = 60.0

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


class StorageError(Exception):
    """Image bytes could not be fetched, validated or written."""


@dataclass
class StoredImage:
    object_key: str
    public_url: str
    size: int
    content_type: str


def extension_for(content_type: str) -> str:
    return EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "png")


def decode_data_url(url: str) -> tuple[bytes, str]:
    """Split a base64 `data:` URL into (bytes, content type)."""
    header, _, payload = url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise StorageError("Unsupported data URL, expected base64 encoding")
    content_type = header[len("data:") :].split(";")[0] or "image/png"
    try:
        return base64.b64decode(payload, validate=True), content_type
    except (binascii.Error, ValueError) as e:
        raise StorageError(f"Invalid base64 image data: {e}") from e


async def fetch_image(url: str, max_size: int | None = None) -> tuple[bytes, str]:
    """Get image bytes and content type from a data URL or an http(s) URL.

    HTTP downloads are streamed and abandoned once they pass ``max_size``
    (``MAX_IMAGE_SIZE`` by default).
    """
    if url.startswith("data:"):
        return decode_data_url(url)
    if not url.startswith(("http://", "https://")):
        raise StorageError(f"Unsupported image URL scheme: {url[:32]}")

    limit = MAX_IMAGE_SIZE if max_size is None else max_size
    try:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise StorageError(
                        f"Failed to download generated image: HTTP {response.status_code}"
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise StorageError(
                        f"Image size {declared} exceeds maximum allowed size of {limit} bytes"
                    )
                content_type = response.headers.get("content-type", "image/png").split(";")[0]
                chunks = bytearray()
                async for chunk in response.aiter_bytes():
                    chunks.extend(chunk)
                    if len(chunks) > limit:
                        raise StorageError(
                            f"Image download exceeds maximum allowed size of {limit} bytes"
                        )
    except httpx.HTTPError as e:
        raise StorageError(f"Failed to download generated image: {type(e).__name__}") from e
    return bytes(chunks), content_type


class AssetStorage:
    """Stores images under `root` as `images/{epoch_ms}/{uuid}.{ext}`.

    Each image gets a JSON sidecar (`<key>.json`) with its content type,
    size, creation time and generation parameters.
    """

    def __init__(self, root: str | Path | None = None, public_base_url: str | None = None):
        self.root = Path(root or settings.IMAGE_STORAGE_DIR)
        self.public_base_url = (public_base_url or settings.IMAGE_PUBLIC_BASE_URL).rstrip("/")

    def generate_object_key(self, extension: str = "png") -> str:
        return f"images/{int(time.time() * 1000)}/{uuid.uuid4()}.{extension}"

    def public_url(self, object_key: str) -> str:
        return f"{self.public_base_url}/{object_key}"

    def _path(self, object_key: str) -> Path:
        path = (self.root / object_key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageError(f"Object key escapes storage root: {object_key}")
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + ".json")

    def store(
        self,
        data: bytes,
        content_type: str = "image/png",
        generation_params: dict[str, Any] | None = None,
        original_filename: str | None = None,
    ) -> StoredImage:
        content_type = content_type.split(";")[0].strip().lower()
        if content_type not in EXTENSIONS:
            raise StorageError(f"Unsupported content type: {content_type}")
        if len(data) > MAX_IMAGE_SIZE:
            raise StorageError(
                f"Image size {len(data)} exceeds maximum allowed size of {MAX_IMAGE_SIZE} bytes"
            )

        object_key = self.generate_object_key(extension_for(content_type))
        path = self._path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        metadata = {
            "content_type": content_type,
            "original_filename": original_filename or "generated-image",
            "size": len(data),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "generation_params": generation_params or {},
        }
        self._meta_path(path).write_text(json.dumps(metadata, indent=2), encoding="utf-8")

        logger.info(f"Stored image {object_key} ({len(data)} bytes)")
        return StoredImage(
            object_key=object_key,
            public_url=self.public_url(object_key),
            size=len(data),
            content_type=content_type,
        )

    async def store_from_url(
        self,
        url: str,
        generation_params: dict[str, Any] | None = None,
        original_filename: str | None = None,
    ) -> StoredImage:
        data, content_type = await fetch_image(url)
        return await asyncio.to_thread(
            self.store, data, content_type, generation_params, original_filename
        )

    def get(self, object_key: str) -> bytes | None:
        path = self._path(object_key)
        return path.read_bytes() if path.is_file() else None

    def get_metadata(self, object_key: str) -> dict[str, Any] | None:
        meta = self._meta_path(self._path(object_key))
        if not meta.is_file():
            return None
        return json.loads(meta.read_text(encoding="utf-8"))

    def delete(self, object_key: str) -> bool:
        path = self._path(object_key)
        if not path.is_file():
            return False
        path.unlink()
        self._meta_path(path).unlink(missing_ok=True)
        try:
            path.parent.rmdir()
        except OSError:
            pass  # Not empty
        return True

    def delete_many(self, object_keys: list[str]) -> dict[str, list[str]]:
        deleted, failed = [], []
        for key in object_keys:
            (deleted if self.delete(key) else failed).append(key)
        return {"success": deleted, "failed": failed}

    def list_keys(self, prefix: str = "images/", limit: int | None = None) -> list[str]:
        base = self.root / "images"
        if not base.is_dir():
            return []
        keys = sorted(
            p.relative_to(self.root).as_posix()
            for p in base.rglob("*")
            if p.is_file() and p.suffix != ".json"
        )
        keys = [k for k in keys if k.startswith(prefix)]
        return keys[:limit] if limit else keys

    def stats(self) -> dict[str, Any]:
        total_objects = 0
        total_size = 0
        oldest: float | None = None
        newest: float | None = None
        for key in self.list_keys():
            stat = self._path(key).stat()
            total_objects += 1
            total_size += stat.st_size
            oldest = stat.st_mtime if oldest is None else min(oldest, stat.st_mtime)
            newest = stat.st_mtime if newest is None else max(newest, stat.st_mtime)

        def iso(ts: float | None) -> str | None:
            return datetime.fromtimestamp(ts, timezone.utc).isoformat() if ts else None

        return {
            "total_objects": total_objects,
            "total_size": total_size,
            "oldest_object": iso(oldest),
            "newest_object": iso(newest),
        }
