"""Tests for bucket and file storage facades."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from selfdb.auth import AuthClient
from selfdb.config import SelfDBConfig
from selfdb.errors import SelfDBError
from selfdb.storage import StorageClient
from selfdb.transport.http import SelfDBHttpClient

BUCKETS = [
    {"id": "b-1", "name": "Avatars"},
    {"id": "b-2", "name": "avatars"},
    {"id": "b-3", "name": "Docs"},
]


@pytest.fixture
def auth() -> MagicMock:
    double = MagicMock(spec=AuthClient)
    double.make_authenticated_request = AsyncMock()
    return double


@pytest.fixture
def storage_http() -> MagicMock:
    transport = MagicMock(spec=SelfDBHttpClient)
    transport.request = AsyncMock(return_value="")
    return transport


@pytest.fixture
def storage(config: SelfDBConfig, auth: MagicMock, storage_http: MagicMock) -> StorageClient:
    return StorageClient(config, auth, storage_http)


class TestBuckets:
    async def test_find_prefers_exact_match(
        self, storage: StorageClient, auth: MagicMock
    ) -> None:
        auth.make_authenticated_request.return_value = BUCKETS
        assert await storage.buckets.find_by_name("avatars") == "b-2"

    async def test_find_falls_back_to_case_insensitive(
        self, storage: StorageClient, auth: MagicMock
    ) -> None:
        auth.make_authenticated_request.return_value = BUCKETS
        assert await storage.buckets.find_by_name("docs") == "b-3"
        assert await storage.buckets.find_by_name("videos") is None

    async def test_find_propagates_errors(
        self, storage: StorageClient, auth: MagicMock
    ) -> None:
        auth.make_authenticated_request.side_effect = SelfDBError("down")
        with pytest.raises(SelfDBError, match="down"):
            await storage.buckets.find_by_name("docs")

    async def test_create_and_list(self, storage: StorageClient, auth: MagicMock) -> None:
        await storage.create_bucket("media", is_public=True)
        await storage.list_buckets(limit=10)

        create, listing = auth.make_authenticated_request.await_args_list
        assert create.args == ("POST", "/api/v1/buckets")
        assert create.kwargs["json"] == {"name": "media", "is_public": True}
        assert listing.args == ("GET", "/api/v1/buckets")
        assert listing.kwargs["params"] == {"limit": 10, "offset": None}

    async def test_bucket_crud_paths(self, storage: StorageClient, auth: MagicMock) -> None:
        await storage.buckets.get_bucket("b-1")
        await storage.buckets.update_bucket("b-1", is_public=False)
        await storage.buckets.delete_bucket("b-1")

        calls = [call.args for call in auth.make_authenticated_request.await_args_list]
        assert calls == [
            ("GET", "/api/v1/buckets/b-1"),
            ("PUT", "/api/v1/buckets/b-1"),
            ("DELETE", "/api/v1/buckets/b-1"),
        ]


class TestFiles:
    async def test_two_phase_upload(
        self, storage: StorageClient, auth: MagicMock, storage_http: MagicMock
    ) -> None:
        auth.make_authenticated_request.side_effect = [
            BUCKETS,
            {
                "file_metadata": {"id": "f-1", "filename": "a.png"},
                "presigned_upload_info": {
                    "upload_url": "http://localhost:8001/upload/xyz",
                    "upload_method": "put",
                },
            },
        ]

        result = await storage.upload("Docs", b"\x89PNG", "a.png")

        assert result == {"file": {"id": "f-1", "filename": "a.png"}}
        initiate = auth.make_authenticated_request.await_args_list[1]
        assert initiate.args == ("POST", "/api/v1/files/initiate-upload")
        assert initiate.kwargs["json"] == {
            "filename": "a.png",
            "content_type": "image/png",
            "size": 4,
            "bucket_id": "b-3",
        }
        storage_http.request.assert_awaited_once_with(
            "PUT",
            "http://localhost:8001/upload/xyz",
            data=b"\x89PNG",
            headers={"Content-Type": "image/png"},
            response_type="text",
        )

    async def test_upload_unknown_bucket(
        self, storage: StorageClient, auth: MagicMock, storage_http: MagicMock
    ) -> None:
        auth.make_authenticated_request.return_value = BUCKETS

        with pytest.raises(SelfDBError) as exc_info:
            await storage.upload("videos", b"data")

        assert exc_info.value.code == "BUCKET_NOT_FOUND"
        storage_http.request.assert_not_called()

    async def test_multipart_upload_builds_fresh_form(
        self, storage: StorageClient, auth: MagicMock, storage_http: MagicMock
    ) -> None:
        await storage.files.upload_file("b-1", b"hello", "note.txt", metadata={"k": "v"})

        call = auth.make_authenticated_request.await_args
        assert call.args == ("POST", "/files/upload/b-1")
        assert call.kwargs["http"] is storage_http
        build_form = call.kwargs["data"]
        first, second = build_form(), build_form()
        assert isinstance(first, aiohttp.FormData)
        assert first is not second

    async def test_download_uses_storage_transport(
        self, storage: StorageClient, auth: MagicMock, storage_http: MagicMock
    ) -> None:
        auth.make_authenticated_request.side_effect = [BUCKETS, b"bytes"]

        assert await storage.download("Avatars", "f-9") == b"bytes"

        call = auth.make_authenticated_request.await_args
        assert call.args == ("GET", "/files/download/b-1/f-9")
        assert call.kwargs == {"http": storage_http, "response_type": "bytes"}

    async def test_delete_targets_file_id(
        self, storage: StorageClient, auth: MagicMock
    ) -> None:
        auth.make_authenticated_request.side_effect = [BUCKETS, None]

        await storage.delete("Docs", "f-7")

        assert auth.make_authenticated_request.await_args.args == (
            "DELETE",
            "/api/v1/files/f-7",
        )

    async def test_get_url(self, storage: StorageClient, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = BUCKETS
        assert await storage.get_url("Docs", "f-1") == (
            "http://localhost:8001/files/download/b-3/f-1"
        )

    async def test_list(
        self, storage: StorageClient, auth: MagicMock, storage_http: MagicMock
    ) -> None:
        auth.make_authenticated_request.side_effect = [BUCKETS, [{"id": "f-1"}]]

        assert await storage.list("Docs", search="report") == [{"id": "f-1"}]

        call = auth.make_authenticated_request.await_args
        assert call.args == ("GET", "/files/list/b-3")
        assert call.kwargs["params"] == {"limit": None, "offset": None, "search": "report"}

    async def test_file_info_endpoints(
        self, storage: StorageClient, auth: MagicMock
    ) -> None:
        files = storage.files
        await files.get_file_view_info("f-1")
        await files.get_file_download_info("f-1")
        await files.get_public_file_view_info("f-1")
        await files.get_public_file_download_info("f-1")

        paths = [call.args[1] for call in auth.make_authenticated_request.await_args_list]
        assert paths == [
            "/api/v1/files/f-1/view-info",
            "/api/v1/files/f-1/download-info",
            "/api/v1/files/public/f-1/view-info",
            "/api/v1/files/public/f-1/download-info",
        ]
