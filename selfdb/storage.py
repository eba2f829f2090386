"""Bucket and file storage for SelfDB.

Bucket management and file bookkeeping live on the API service; file bytes
move through the storage service (``SelfDBConfig.storage_url``). Uploads
either go multipart to a bucket-scoped endpoint or use two phases: the
backend hands out a presigned URL and the bytes are sent there directly.
"""

from __future__ import annotations

import json
import logging
import mimetypes
from typing import TYPE_CHECKING, Any

import aiohttp

from .errors import SelfDBError

if TYPE_CHECKING:
    from .auth import AuthClient
    from .config import SelfDBConfig
    from .transport.http import SelfDBHttpClient

_LOGGER = logging.getLogger(__name__)

BUCKETS_PATH = "/api/v1/buckets"
FILES_PATH = "/api/v1/files"

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _guess_content_type(filename: str, content_type: str | None = None) -> str:
    if content_type:
        return content_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE


def _bucket_not_found(bucket: str, suggestion: str) -> SelfDBError:
    return SelfDBError(
        f"Bucket '{bucket}' not found",
        code="BUCKET_NOT_FOUND",
        suggestion=suggestion,
    )


class BucketClient:
    """Bucket CRUD on the API service."""

    def __init__(self, auth: AuthClient) -> None:
        self._auth = auth

    async def create_bucket(
        self,
        name: str,
        *,
        is_public: bool | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": name}
        if is_public is not None:
            payload["is_public"] = is_public
        if description is not None:
            payload["description"] = description
        return await self._auth.make_authenticated_request(
            "POST", BUCKETS_PATH, json=payload
        )

    async def list_buckets(
        self, *, limit: int | None = None, offset: int | None = None
    ) -> list[dict[str, Any]]:
        return await self._auth.make_authenticated_request(
            "GET", BUCKETS_PATH, params={"limit": limit or None, "offset": offset or None}
        )

    async def get_bucket(self, bucket_id: str) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{BUCKETS_PATH}/{bucket_id}"
        )

    async def update_bucket(self, bucket_id: str, **updates: Any) -> dict[str, Any]:
        """Update ``name``, ``is_public`` or ``description``."""
        return await self._auth.make_authenticated_request(
            "PUT", f"{BUCKETS_PATH}/{bucket_id}", json=updates
        )

    async def delete_bucket(self, bucket_id: str) -> None:
        await self._auth.make_authenticated_request(
            "DELETE", f"{BUCKETS_PATH}/{bucket_id}"
        )

    async def find(self, name: str) -> dict[str, Any] | None:
        """Find a bucket by exact name, then case-insensitively."""
        buckets = await self.list_buckets()
        for bucket in buckets:
            if bucket.get("name") == name:
                return bucket
        lowered = name.lower()
        for bucket in buckets:
            if str(bucket.get("name", "")).lower() == lowered:
                return bucket
        return None

    async def find_by_name(self, name: str) -> str | None:
        """Return the id of the bucket called ``name``, or None."""
        bucket = await self.find(name)
        return str(bucket["id"]) if bucket is not None else None


class FileClient:
    """File operations on the storage and API services."""

    def __init__(
        self,
        config: SelfDBConfig,
        auth: AuthClient,
        storage_http: SelfDBHttpClient,
        buckets: BucketClient,
    ) -> None:
        self._config = config
        self._auth = auth
        self._storage_http = storage_http
        self._buckets = buckets

    async def _storage_request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._auth.make_authenticated_request(
            method, path, http=self._storage_http, **kwargs
        )

    async def upload_file(
        self,
        bucket_id: str,
        content: bytes,
        filename: str = "untitled",
        *,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Multipart upload straight to the bucket-scoped storage endpoint."""
        resolved_type = _guess_content_type(filename, content_type)

        def build_form() -> aiohttp.FormData:
            form = aiohttp.FormData()
            form.add_field("file", content, filename=filename, content_type=resolved_type)
            if metadata:
                form.add_field("metadata", json.dumps(metadata))
            return form

        return await self._storage_request(
            "POST", f"/files/upload/{bucket_id}", data=build_form
        )

    async def initiate_upload(
        self,
        bucket_id: str,
        filename: str,
        *,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._storage_request(
            "POST",
            "/files/initiate-upload",
            json={
                "bucket_id": bucket_id,
                "filename": filename,
                "content_type": content_type,
                "metadata": metadata,
            },
        )

    async def list_files(
        self,
        bucket_id: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._storage_request(
            "GET",
            f"/files/list/{bucket_id}",
            params={"limit": limit or None, "offset": offset or None, "search": search or None},
        )

    async def download_file(self, bucket_id: str, file_id: str) -> bytes:
        return await self._storage_request(
            "GET", f"/files/download/{bucket_id}/{file_id}", response_type="bytes"
        )

    async def get_file_info(self, bucket_id: str, file_id: str) -> dict[str, Any]:
        return await self._storage_request("GET", f"/files/info/{bucket_id}/{file_id}")

    async def update_file_metadata(
        self, bucket_id: str, file_id: str, metadata: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._storage_request(
            "PUT", f"/files/metadata/{bucket_id}/{file_id}", json={"metadata": metadata}
        )

    async def delete_file(self, file_id: str) -> None:
        await self._auth.make_authenticated_request("DELETE", f"{FILES_PATH}/{file_id}")

    def get_file_url(self, bucket_id: str, file_id: str) -> str:
        return f"{self._config.storage_url}/files/download/{bucket_id}/{file_id}"

    async def get_file_view_info(self, file_id: str) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FILES_PATH}/{file_id}/view-info"
        )

    async def get_file_download_info(self, file_id: str) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FILES_PATH}/{file_id}/download-info"
        )

    async def get_public_file_view_info(self, file_id: str) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FILES_PATH}/public/{file_id}/view-info"
        )

    async def get_public_file_download_info(self, file_id: str) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FILES_PATH}/public/{file_id}/download-info"
        )

    async def upload_by_bucket_name(
        self,
        bucket_name: str,
        content: bytes,
        filename: str = "untitled",
        *,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Two-phase upload: initiate on the backend, then send to the presigned URL.

        Returns:
            ``{"file": <file metadata>}``
        """
        bucket = await self._buckets.find(bucket_name)
        if bucket is None:
            raise _bucket_not_found(bucket_name, "Create the bucket first or check the bucket name")

        resolved_type = _guess_content_type(filename, content_type)
        initiated = await self._auth.make_authenticated_request(
            "POST",
            f"{FILES_PATH}/initiate-upload",
            json={
                "filename": filename,
                "content_type": resolved_type,
                "size": len(content),
                "bucket_id": bucket["id"],
            },
        )

        upload_info = initiated["presigned_upload_info"]
        method = str(upload_info.get("upload_method", "PUT")).upper()
        _LOGGER.debug("Uploading %s (%d bytes) via %s", filename, len(content), method)

        await self._storage_http.request(
            method,
            upload_info["upload_url"],
            data=content,
            headers={"Content-Type": resolved_type},
            response_type="text",
        )
        return {"file": initiated.get("file_metadata")}


class StorageClient:
    """Name-based storage operations over buckets and files."""

    def __init__(
        self,
        config: SelfDBConfig,
        auth: AuthClient,
        storage_http: SelfDBHttpClient,
    ) -> None:
        self.buckets = BucketClient(auth)
        self.files = FileClient(config, auth, storage_http, self.buckets)

    async def _resolve_bucket(self, bucket: str, suggestion: str = "Check the bucket name") -> str:
        bucket_id = await self.buckets.find_by_name(bucket)
        if bucket_id is None:
            raise _bucket_not_found(bucket, suggestion)
        return bucket_id

    async def upload(
        self,
        bucket: str,
        content: bytes,
        filename: str = "untitled",
        *,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        return await self.files.upload_by_bucket_name(
            bucket, content, filename, content_type=content_type
        )

    async def download(self, bucket: str, file_id: str) -> bytes:
        bucket_id = await self._resolve_bucket(bucket)
        return await self.files.download_file(bucket_id, file_id)

    async def delete(self, bucket: str, file_id: str) -> None:
        await self._resolve_bucket(bucket)
        await self.files.delete_file(file_id)

    async def get_url(self, bucket: str, file_id: str) -> str:
        bucket_id = await self._resolve_bucket(bucket)
        return self.files.get_file_url(bucket_id, file_id)

    async def list(
        self,
        bucket: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        bucket_id = await self._resolve_bucket(bucket)
        return await self.files.list_files(bucket_id, limit=limit, offset=offset, search=search)

    async def create_bucket(self, name: str, **options: Any) -> dict[str, Any]:
        return await self.buckets.create_bucket(name, **options)

    async def list_buckets(
        self, *, limit: int | None = None, offset: int | None = None
    ) -> list[dict[str, Any]]:
        return await self.buckets.list_buckets(limit=limit, offset=offset)
