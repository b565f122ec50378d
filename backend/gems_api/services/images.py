from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gems_api.core.config import Settings, get_settings
from gems_api.schemas import ImageUploadResult
from gems_api.services import assets as asset_service
from gems_api.services import imaging
from gems_api.services.storage import B2StorageClient, DownloadedFile, StoredFile
from gems_api.tasks.runner import CleanupRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredVariant:
    variant: str
    file: StoredFile
    url: str


@dataclass(frozen=True)
class DeleteOutcome:
    file_name: str
    deleted: bool
    error: str | None = None


class ImageService:
    """Turns one uploaded image into stored variants and manages them afterwards.

    Built once per process; the storage client it wraps owns the only shared
    mutable state (the cached object store session).
    """

    def __init__(
        self,
        storage: B2StorageClient,
        runner: CleanupRunner | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage
        self.runner = runner
        self._session_factory = session_factory
        self.max_file_size = self.settings.image_max_bytes

    @property
    def is_initialized(self) -> bool:
        return self.storage.is_initialized

    async def initialize(self) -> None:
        await self.storage.authorize()

    def validate_image(self, data: bytes, mime_type: str) -> None:
        imaging.validate_image(data, mime_type, max_size=self.max_file_size)

    async def get_image_metadata(self, data: bytes) -> dict[str, Any]:
        return await asyncio.to_thread(imaging.read_metadata, data)

    async def upload_image(
        self,
        data: bytes,
        original_name: str,
        mime_type: str,
    ) -> ImageUploadResult:
        await self.initialize()
        self.validate_image(data, mime_type)

        asset_id = str(uuid4())
        extension = imaging.file_extension(mime_type)

        results = await asyncio.gather(
            *(
                self._store_variant(asset_id, variant, data, mime_type, extension)
                for variant in imaging.VARIANTS
            ),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            stored = [result for result in results if isinstance(result, StoredVariant)]
            logger.error(
                "Upload of asset %s failed with %d of %d variants stored: %s",
                asset_id,
                len(stored),
                len(results),
                failures[0],
            )
            if stored:
                self._schedule_cleanup(asset_id, [item.file for item in stored])
            raise failures[0]

        uploaded_at = datetime.now(timezone.utc)
        await self._record_asset(asset_id, extension, original_name, mime_type, uploaded_at)
        return ImageUploadResult(
            id=asset_id,
            urls={item.variant: item.url for item in results},
            original_name=original_name,
            mime_type=mime_type,
            uploaded_at=uploaded_at,
        )

    async def _store_variant(
        self,
        asset_id: str,
        variant: imaging.ImageVariant,
        data: bytes,
        mime_type: str,
        extension: str,
    ) -> StoredVariant:
        processed = await asyncio.to_thread(imaging.transcode, data, variant, mime_type)
        file_name = imaging.variant_filename(asset_id, variant.name, extension)
        slot = await self.storage.get_upload_url()
        stored = await self.storage.upload_file(slot, file_name, processed, mime_type)
        return StoredVariant(variant=variant.name, file=stored, url=self.storage.public_url(file_name))

    def _schedule_cleanup(self, asset_id: str, files: list[StoredFile]) -> None:
        if not self.settings.image_cleanup_on_failure:
            logger.warning(
                "Leaving %d stored variants of failed asset %s in place", len(files), asset_id
            )
            return
        if self.runner is None:
            logger.warning("No cleanup runner; variants of asset %s left in place", asset_id)
            return
        try:
            self.runner.submit(lambda: self._remove_files(asset_id, files))
        except RuntimeError:
            logger.warning("Cleanup runner not ready; variants of asset %s left in place", asset_id)

    async def _remove_files(self, asset_id: str, files: list[StoredFile]) -> None:
        for stored in files:
            try:
                await self.storage.delete_file_version(stored.file_id, stored.file_name)
            except Exception:
                logger.exception(
                    "Failed to clean up %s of asset %s", stored.file_name, asset_id
                )

    async def delete_image(self, asset_id: str) -> bool:
        try:
            await self.initialize()
            extension = await self._resolve_extension(asset_id)
        except Exception:
            logger.exception("Image deletion failed before any attempt for %s", asset_id)
            return False

        outcomes = await self.delete_variants(asset_id, extension)
        deleted = sum(1 for outcome in outcomes if outcome.deleted)
        logger.info("Deleted %d of %d variants of asset %s", deleted, len(outcomes), asset_id)
        # Keep the record while any variant is left so a retry finds the same names.
        if not any(outcome.error for outcome in outcomes):
            await self._forget_asset(asset_id)
        return True

    async def delete_variants(self, asset_id: str, extension: str) -> list[DeleteOutcome]:
        file_names = [
            imaging.variant_filename(asset_id, name, extension)
            for name in imaging.variant_names()
        ]
        return list(await asyncio.gather(*(self._delete_file(name) for name in file_names)))

    async def _delete_file(self, file_name: str) -> DeleteOutcome:
        try:
            files = await self.storage.list_file_names(file_name, max_file_count=1)
            match = next((item for item in files if item.file_name == file_name), None)
            if match is None:
                return DeleteOutcome(file_name=file_name, deleted=False)
            await self.storage.delete_file_version(match.file_id, file_name)
        except Exception as exc:
            logger.warning("Failed to delete file %s: %s", file_name, exc)
            return DeleteOutcome(file_name=file_name, deleted=False, error=str(exc))
        return DeleteOutcome(file_name=file_name, deleted=True)

    async def _resolve_extension(self, asset_id: str) -> str:
        if self._session_factory is not None:
            try:
                async with self._session_factory() as session:
                    asset = await asset_service.get_asset(session, asset_id)
            except Exception:
                logger.exception("Registry lookup failed for asset %s; probing the store", asset_id)
            else:
                if asset is not None:
                    return asset.extension

        # No registry entry: read the extension off any variant still stored.
        files = await self.storage.list_file_names(
            asset_id, max_file_count=len(imaging.VARIANTS), prefix=asset_id
        )
        for stored in files:
            extension = imaging.stored_extension(asset_id, stored.file_name)
            if extension:
                return extension
        return imaging.DEFAULT_EXTENSION

    async def _record_asset(
        self,
        asset_id: str,
        extension: str,
        original_name: str,
        mime_type: str,
        uploaded_at: datetime,
    ) -> None:
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                await asset_service.record_asset(
                    session, asset_id, extension, original_name, mime_type, uploaded_at
                )
        except Exception:
            logger.exception("Failed to record asset %s; deletion will probe the store", asset_id)

    async def _forget_asset(self, asset_id: str) -> None:
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                await asset_service.forget_asset(session, asset_id)
        except Exception:
            logger.exception("Failed to remove registry entry for asset %s", asset_id)

    async def get_image(self, file_name: str) -> DownloadedFile | None:
        await self.initialize()
        return await self.storage.download_file_by_name(file_name)

    async def health_check(self) -> dict[str, Any]:
        try:
            await self.initialize()
            await self.storage.list_buckets()
        except Exception as exc:
            return {
                "status": "unhealthy",
                "error": str(exc),
                "initialized": self.is_initialized,
            }
        return {
            "status": "healthy",
            "initialized": self.is_initialized,
            "bucketName": self.storage.bucket_name,
            "supportedFormats": list(imaging.SUPPORTED_FORMATS),
            "maxFileSize": imaging.format_megabytes(self.max_file_size),
            "imageSizes": imaging.variant_names(),
        }
