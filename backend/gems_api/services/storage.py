import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Final
from urllib.parse import quote

import httpx

from gems_api.core.config import Settings, get_settings
from gems_api.services.errors import StorageAuthError, StorageConfigError, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadSlot:
    upload_url: str
    token: str


@dataclass(frozen=True)
class StoredFile:
    file_id: str
    file_name: str


@dataclass(frozen=True)
class DownloadedFile:
    body: bytes
    content_type: str | None
    content_length: int
    etag: str | None


def _describe_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    code = payload.get("code") or response.status_code
    message = payload.get("message") or response.reason_phrase
    return f"{code}: {message}"


def _entity_tag(headers: httpx.Headers) -> str | None:
    etag = headers.get("etag")
    if etag:
        return etag
    sha1 = headers.get("x-bz-content-sha1")
    return f'"{sha1}"' if sha1 else None


class B2StorageClient:
    """Backblaze B2 native API client holding one cached account session.

    ``authorize`` is the only writer of the session fields. It runs at most once
    per client, lazily before the first operation, and concurrent first callers
    converge on the same session. There is no refresh: an expired token surfaces
    as a ``StorageError`` from whichever operation hits it.
    """

    api_version: Final[str] = "b2api/v2"

    _required: Final[tuple[tuple[str, str], ...]] = (
        ("b2_key_id", "B2_APPLICATION_KEY_ID"),
        ("b2_application_key", "B2_APPLICATION_KEY"),
        ("b2_bucket_id", "B2_BUCKET_ID"),
        ("b2_bucket_name", "B2_BUCKET_NAME"),
    )

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = self.settings.b2_timeout_seconds
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
        )
        self._lock = asyncio.Lock()

        self.is_initialized = False
        self.account_id: str | None = None
        self.api_url: str | None = None
        self.download_url: str | None = None
        self.bucket_id: str | None = None
        self.bucket_name: str | None = None
        self._auth_token: str | None = None

    async def authorize(self) -> None:
        if self.is_initialized:
            return
        async with self._lock:
            if self.is_initialized:
                return

            for attr, name in self._required:
                if not getattr(self.settings, attr):
                    raise StorageConfigError(f"Missing required configuration: {name}")

            url = f"{self.settings.b2_api_url.rstrip('/')}/{self.api_version}/b2_authorize_account"
            try:
                response = await self._client.get(
                    url,
                    auth=(self.settings.b2_key_id, self.settings.b2_application_key),
                )
            except httpx.TimeoutException as exc:
                raise StorageAuthError(f"authorize timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                raise StorageAuthError(f"authorize failed: {exc}") from exc
            if not response.is_success:
                raise StorageAuthError(f"authorize failed: {_describe_error(response)}")

            payload = response.json()
            self.account_id = payload["accountId"]
            self.api_url = payload["apiUrl"]
            self.download_url = payload["downloadUrl"]
            self._auth_token = payload["authorizationToken"]
            self.bucket_id = self.settings.b2_bucket_id
            self.bucket_name = self.settings.b2_bucket_name
            self.is_initialized = True

        logger.info("Object store session established for bucket %s", self.bucket_name)

    async def close(self) -> None:
        await self._client.aclose()

    def public_url(self, file_name: str) -> str:
        base_url = self.settings.b2_bucket_url or f"{self.download_url}/file/{self.bucket_name}"
        return f"{base_url.rstrip('/')}/{file_name}"

    async def _send(self, operation: str, request: httpx.Request) -> httpx.Response:
        try:
            response = await self._client.send(request)
        except httpx.TimeoutException as exc:
            raise StorageError(f"{operation} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"{operation} failed: {exc}") from exc
        return response

    async def _call(self, operation: str, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        request = self._client.build_request(
            "POST",
            f"{self.api_url}/{self.api_version}/{endpoint}",
            json=payload,
            headers={"Authorization": self._auth_token},
        )
        response = await self._send(operation, request)
        if not response.is_success:
            raise StorageError(
                f"{operation} failed: {_describe_error(response)}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_upload_url(self, bucket_id: str | None = None) -> UploadSlot:
        await self.authorize()
        payload = await self._call(
            "get upload url",
            "b2_get_upload_url",
            {"bucketId": bucket_id or self.bucket_id},
        )
        return UploadSlot(upload_url=payload["uploadUrl"], token=payload["authorizationToken"])

    async def upload_file(
        self,
        slot: UploadSlot,
        file_name: str,
        data: bytes,
        mime_type: str,
        info: dict[str, str] | None = None,
    ) -> StoredFile:
        headers = {
            "Authorization": slot.token,
            "X-Bz-File-Name": quote(file_name, safe="/"),
            "Content-Type": mime_type,
            "X-Bz-Content-Sha1": hashlib.sha1(data).hexdigest(),
        }
        file_info = {"src_last_modified_millis": str(int(time.time() * 1000))}
        file_info.update(info or {})
        for key, value in file_info.items():
            headers[f"X-Bz-Info-{key}"] = quote(value, safe="")

        request = self._client.build_request("POST", slot.upload_url, content=data, headers=headers)
        response = await self._send("upload", request)
        if not response.is_success:
            raise StorageError(
                f"upload failed: {_describe_error(response)}",
                status_code=response.status_code,
            )
        payload = response.json()
        return StoredFile(file_id=payload["fileId"], file_name=payload["fileName"])

    async def list_file_names(
        self,
        start_file_name: str,
        max_file_count: int = 1,
        prefix: str | None = None,
        bucket_id: str | None = None,
    ) -> list[StoredFile]:
        await self.authorize()
        body: dict[str, Any] = {
            "bucketId": bucket_id or self.bucket_id,
            "startFileName": start_file_name,
            "maxFileCount": max_file_count,
        }
        if prefix is not None:
            body["prefix"] = prefix
        payload = await self._call("list files", "b2_list_file_names", body)
        return [
            StoredFile(file_id=item["fileId"], file_name=item["fileName"])
            for item in payload.get("files", [])
        ]

    async def delete_file_version(self, file_id: str, file_name: str) -> None:
        await self.authorize()
        await self._call(
            "delete",
            "b2_delete_file_version",
            {"fileId": file_id, "fileName": file_name},
        )

    async def list_buckets(self) -> list[str]:
        await self.authorize()
        payload = await self._call("list buckets", "b2_list_buckets", {"accountId": self.account_id})
        return [bucket["bucketName"] for bucket in payload.get("buckets", [])]

    async def download_file_by_name(self, file_name: str) -> DownloadedFile | None:
        await self.authorize()
        request = self._client.build_request(
            "GET",
            f"{self.download_url}/file/{self.bucket_name}/{quote(file_name, safe='/')}",
            headers={"Authorization": self._auth_token},
        )
        response = await self._send("download", request)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise StorageError(
                f"download failed: {_describe_error(response)}",
                status_code=response.status_code,
            )
        return DownloadedFile(
            body=response.content,
            content_type=response.headers.get("content-type"),
            content_length=len(response.content),
            etag=_entity_tag(response.headers),
        )
