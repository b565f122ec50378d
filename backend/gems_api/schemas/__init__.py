from gems_api.schemas.auth import AdminRead, Token
from gems_api.schemas.image import ImageDeleteResponse, ImageMetadata, ImageUploadResult

__all__ = [
    "Token",
    "AdminRead",
    "ImageUploadResult",
    "ImageMetadata",
    "ImageDeleteResponse",
]
