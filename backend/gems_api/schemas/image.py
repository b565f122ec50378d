from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageUploadResult(CamelModel):
    id: str
    urls: dict[str, str]
    original_name: str
    mime_type: str
    uploaded_at: datetime


class ImageMetadata(CamelModel):
    width: int
    height: int
    format: str
    size: int
    has_alpha: bool
    channels: int
    original_name: str | None = None
    mime_type: str | None = None


class ImageDeleteResponse(BaseModel):
    success: bool
    message: str
