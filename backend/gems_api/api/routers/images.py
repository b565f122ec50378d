import logging
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from fastapi.responses import JSONResponse

from gems_api.api.deps import get_current_admin, get_image_service
from gems_api.schemas import AdminRead, ImageDeleteResponse, ImageMetadata, ImageUploadResult
from gems_api.services.errors import ImageServiceError, ImageValidationError
from gems_api.services.images import ImageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["images"])


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


@router.post("/upload", response_model=ImageUploadResult, status_code=status.HTTP_201_CREATED)
async def upload_image(
    image: UploadFile = File(...),
    service: ImageService = Depends(get_image_service),
    admin: AdminRead = Depends(get_current_admin),
) -> ImageUploadResult:
    data = await image.read()
    mime_type = image.content_type or "application/octet-stream"
    try:
        return await service.upload_image(data, image.filename or "upload", mime_type)
    except ImageValidationError as exc:
        raise _error(status.HTTP_400_BAD_REQUEST, exc.code, str(exc)) from exc
    except ImageServiceError as exc:
        logger.error("Image upload by %s failed: %s", admin.username, exc)
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "UPLOAD_FAILED", str(exc)) from exc


@router.post("/metadata", response_model=ImageMetadata)
async def get_image_metadata(
    image: UploadFile = File(...),
    service: ImageService = Depends(get_image_service),
    admin: AdminRead = Depends(get_current_admin),
) -> ImageMetadata:
    data = await image.read()
    mime_type = image.content_type or "application/octet-stream"
    try:
        service.validate_image(data, mime_type)
        metadata = await service.get_image_metadata(data)
    except ImageValidationError as exc:
        raise _error(status.HTTP_400_BAD_REQUEST, exc.code, str(exc)) from exc
    except ImageServiceError as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "METADATA_ERROR", str(exc)) from exc
    return ImageMetadata(**metadata, original_name=image.filename, mime_type=mime_type)


@router.get("/health")
async def image_health(
    service: ImageService = Depends(get_image_service),
    admin: AdminRead = Depends(get_current_admin),
) -> JSONResponse:
    health = await service.health_check()
    status_code = (
        status.HTTP_200_OK if health["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=health)


@router.get("/proxy/{filename}")
async def proxy_image(
    filename: str,
    service: ImageService = Depends(get_image_service),
) -> Response:
    try:
        stored = await service.get_image(filename)
    except ImageServiceError as exc:
        logger.error("Failed to proxy image %s: %s", filename, exc)
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "PROXY_ERROR", str(exc)) from exc
    if stored is None:
        raise _error(status.HTTP_404_NOT_FOUND, "IMAGE_NOT_FOUND", "Image not found")

    return Response(
        content=stored.body,
        media_type=stored.content_type or "image/jpeg",
        headers={
            "Cache-Control": "public, max-age=31536000",
            "ETag": stored.etag or f'"{filename}"',
        },
    )


@router.delete("/{asset_id}", response_model=ImageDeleteResponse)
async def delete_image(
    asset_id: str,
    service: ImageService = Depends(get_image_service),
    admin: AdminRead = Depends(get_current_admin),
) -> ImageDeleteResponse:
    try:
        normalized = str(uuid.UUID(asset_id))
    except ValueError as exc:
        raise _error(status.HTTP_400_BAD_REQUEST, "INVALID_FILE_ID", "Invalid file ID format") from exc

    if not await service.delete_image(normalized):
        raise _error(
            status.HTTP_404_NOT_FOUND,
            "DELETE_FAILED",
            "Failed to delete image or image not found",
        )
    return ImageDeleteResponse(success=True, message="Image deleted successfully")
