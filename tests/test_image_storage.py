"""Tests for filesystem image storage."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from knowledge_search.images.adapters.mock import PLACEHOLDER_PNG
from knowledge_search.images.storage import (
    StorageError,
    decode_data_url,
    extension_for,
    fetch_image,
)

DATA_URL = "data:image/png;base64," + base64.b64encode(PLACEHOLDER_PNG).decode("ascii")


def streamed_response(status_code=200, chunks=(), headers=None):
    """Response double whose body is served by `aiter_bytes` in `chunks`."""
    response = MagicMock(status_code=status_code, headers=headers or {})

    async def aiter_bytes():
        for chunk in chunks:
            yield chunk

    response.aiter_bytes = aiter_bytes
    return response


def patch_download(response=None, error=None):
    """Patch httpx.AsyncClient so `stream` yields `response` or raises `error`."""
    patcher = patch("httpx.AsyncClient")
    mock_client_class = patcher.start()
    mock_client = AsyncMock()
    stream = MagicMock()
    stream.__aenter__.return_value = response
    stream.__aexit__.return_value = None
    if error is not None:
        mock_client.stream = MagicMock(side_effect=error)
    else:
        mock_client.stream = MagicMock(return_value=stream)
    mock_client_class.return_value.__aenter__.return_value = mock_client
    mock_client_class.return_value.__aexit__.return_value = None
    return patcher


class TestHelpers:
    def test_extension_for(self):
        assert extension_for("image/jpeg; charset=binary") == "jpg"
        assert extension_for("image/webp") == "webp"
        assert extension_for("application/octet-stream") == "png"

    def test_decode_data_url(self):
        data, content_type = decode_data_url(DATA_URL)
        assert data == PLACEHOLDER_PNG
        assert content_type == "image/png"

    @pytest.mark.parametrize(
        "url",
        ["data:image/png,plain-text", "data:image/png;base64,@@@", "image/png;base64,abc"],
    )
    def test_decode_data_url_rejects_bad_input(self, url):
        with pytest.raises(StorageError):
            decode_data_url(url)

    @pytest.mark.asyncio
    async def test_fetch_http_image(self):
        response = streamed_response(
            chunks=[b"jpeg-", b"bytes"], headers={"content-type": "image/jpeg"}
        )
        patcher = patch_download(response)
        try:
            data, content_type = await fetch_image("https://cdn.example.com/a.jpg")
        finally:
            patcher.stop()

        assert data == b"jpeg-bytes"
        assert content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_fetch_http_error_status(self):
        patcher = patch_download(streamed_response(status_code=404))
        try:
            with pytest.raises(StorageError, match="HTTP 404"):
                await fetch_image("https://cdn.example.com/missing.png")
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_fetch_network_error(self):
        patcher = patch_download(error=httpx.ConnectError("refused"))
        try:
            with pytest.raises(StorageError, match="ConnectError"):
                await fetch_image("https://cdn.example.com/a.png")
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_fetch_stops_reading_past_size_cap(self):
        consumed = []

        async def aiter_bytes():
            for chunk in [b"1234", b"5678", b"9abc", b"def0"]:
                consumed.append(chunk)
                yield chunk

        response = streamed_response(headers={"content-type": "image/png"})
        response.aiter_bytes = aiter_bytes
        patcher = patch_download(response)
        try:
            with pytest.raises(StorageError, match="exceeds maximum allowed size of 6 bytes"):
                await fetch_image("https://cdn.example.com/huge.png", max_size=6)
        finally:
            patcher.stop()

        assert consumed == [b"1234", b"5678"]

    @pytest.mark.asyncio
    async def test_fetch_rejects_declared_oversize(self, monkeypatch):
        monkeypatch.setattr("knowledge_search.images.storage.MAX_IMAGE_SIZE", 100)
        response = streamed_response(chunks=[b"x"], headers={"content-length": "101"})
        patcher = patch_download(response)
        try:
            with pytest.raises(StorageError, match="Image size 101 exceeds"):
                await fetch_image("https://cdn.example.com/huge.png")
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_fetch_unsupported_scheme(self):
        with pytest.raises(StorageError):
            await fetch_image("ftp://example.com/a.png")


class TestAssetStorage:
    """Tests for AssetStorage."""

    def test_store_and_read_back(self, asset_storage):
        stored = asset_storage.store(
            PLACEHOLDER_PNG, "image/png", generation_params={"pose": "arms-crossed"}
        )

        assert stored.object_key.startswith("images/")
        assert stored.object_key.endswith(".png")
        assert stored.public_url == f"/media/{stored.object_key}"
        assert stored.size == len(PLACEHOLDER_PNG)
        assert asset_storage.get(stored.object_key) == PLACEHOLDER_PNG

        metadata = asset_storage.get_metadata(stored.object_key)
        assert metadata["content_type"] == "image/png"
        assert metadata["generation_params"] == {"pose": "arms-crossed"}
        assert metadata["original_filename"] == "generated-image"

    def test_list_and_stats_ignore_sidecars(self, asset_storage):
        first = asset_storage.store(b"one", "image/png")
        second = asset_storage.store(b"three", "image/jpeg")

        assert sorted(asset_storage.list_keys()) == sorted([first.object_key, second.object_key])
        assert len(asset_storage.list_keys(limit=1)) == 1
        stats = asset_storage.stats()
        assert stats["total_objects"] == 2
        assert stats["total_size"] == 8
        assert stats["oldest_object"] is not None

    def test_empty_storage(self, asset_storage):
        assert asset_storage.list_keys() == []
        assert asset_storage.stats()["total_objects"] == 0
        assert asset_storage.get("images/1/none.png") is None
        assert asset_storage.get_metadata("images/1/none.png") is None

    def test_delete(self, asset_storage):
        stored = asset_storage.store(b"data", "image/png")

        assert asset_storage.delete(stored.object_key) is True
        assert asset_storage.delete(stored.object_key) is False
        assert asset_storage.get(stored.object_key) is None
        assert asset_storage.get_metadata(stored.object_key) is None

    def test_delete_many(self, asset_storage):
        stored = asset_storage.store(b"data", "image/png")
        result = asset_storage.delete_many([stored.object_key, "images/1/missing.png"])
        assert result == {"success": [stored.object_key], "failed": ["images/1/missing.png"]}

    def test_rejects_unsupported_content_type(self, asset_storage):
        with pytest.raises(StorageError, match="Unsupported content type"):
            asset_storage.store(b"<svg/>", "image/svg+xml")

    def test_rejects_oversized_image(self, asset_storage, monkeypatch):
        monkeypatch.setattr("knowledge_search.images.storage.MAX_IMAGE_SIZE", 4)
        with pytest.raises(StorageError, match="exceeds maximum"):
            asset_storage.store(b"12345", "image/png")

    def test_rejects_keys_outside_root(self, asset_storage):
        with pytest.raises(StorageError):
            asset_storage.get("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_store_from_data_url(self, asset_storage):
        stored = await asset_storage.store_from_url(DATA_URL, original_filename="hero.png")
        assert asset_storage.get(stored.object_key) == PLACEHOLDER_PNG
        assert asset_storage.get_metadata(stored.object_key)["original_filename"] == "hero.png"
