"""Variant plan, upload validation and Pillow transcoding.

Everything here is synchronous and side-effect free. Callers on the event loop
run :func:`transcode` and :func:`read_metadata` through ``asyncio.to_thread``.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Final

from PIL import Image, ImageOps

from gems_api.services.errors import (
    EmptyBufferError,
    FileTooLargeError,
    TranscodeError,
    UnsupportedFormatError,
)

SUPPORTED_FORMATS: Final[tuple[str, ...]] = ("image/jpeg", "image/png", "image/webp")
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024
DEFAULT_EXTENSION: Final[str] = "jpg"

_EXTENSIONS: Final[dict[str, str]] = {
    "image/jpeg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
}

# Pillow format name and save options per MIME type; quality is added per variant.
_ENCODERS: Final[dict[str, tuple[str, dict[str, Any]]]] = {
    "image/jpeg": ("JPEG", {"progressive": True}),
    "image/png": ("PNG", {"optimize": True}),
    "image/webp": ("WEBP", {}),
}


@dataclass(frozen=True)
class ImageVariant:
    name: str
    quality: int
    width: int | None = None
    height: int | None = None

    @property
    def resizes(self) -> bool:
        return self.width is not None and self.height is not None


VARIANTS: Final[tuple[ImageVariant, ...]] = (
    ImageVariant("thumbnail", quality=80, width=150, height=150),
    ImageVariant("medium", quality=85, width=400, height=300),
    ImageVariant("large", quality=90, width=800, height=600),
    ImageVariant("original", quality=95),
)

ORIGINAL_VARIANT: Final[str] = "original"


def variant_names() -> list[str]:
    return [variant.name for variant in VARIANTS]


def file_extension(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type, DEFAULT_EXTENSION)


def variant_filename(asset_id: str, variant_name: str, extension: str) -> str:
    """Stored name of one variant. Upload and delete must both go through here."""
    if variant_name == ORIGINAL_VARIANT:
        return f"{asset_id}.{extension}"
    return f"{asset_id}_{variant_name}.{extension}"


def stored_extension(asset_id: str, file_name: str) -> str | None:
    """Extension of ``file_name`` if it is one of the asset's variant names."""
    _, dot, extension = file_name.rpartition(".")
    if not dot or not extension:
        return None
    for name in variant_names():
        if file_name == variant_filename(asset_id, name, extension):
            return extension
    return None


def format_megabytes(size: int) -> str:
    return f"{size // (1024 * 1024)}MB"


def validate_image(data: bytes, mime_type: str, max_size: int = MAX_FILE_SIZE) -> None:
    # Emptiness wins over every other rule, including an unsupported MIME type.
    if not data:
        raise EmptyBufferError("Invalid image file: empty buffer")
    if len(data) > max_size:
        raise FileTooLargeError(
            f"File size exceeds maximum limit of {format_megabytes(max_size)}"
        )
    if mime_type not in SUPPORTED_FORMATS:
        raise UnsupportedFormatError(
            "Unsupported image format. Supported formats: "
            + ", ".join(SUPPORTED_FORMATS)
        )


def transcode(data: bytes, variant: ImageVariant, mime_type: str) -> bytes:
    """Re-encode ``data`` for one variant in the same format family.

    Variants with a target box are cropped to cover it around the centre.
    Unknown MIME types are encoded with the first supported format's encoder.
    """
    image_format, options = _ENCODERS.get(mime_type, _ENCODERS[SUPPORTED_FORMATS[0]])
    save_options = dict(options)
    if image_format != "PNG":
        save_options["quality"] = variant.quality

    buffer = io.BytesIO()
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = source
            if variant.resizes:
                image = ImageOps.fit(
                    source,
                    (variant.width, variant.height),
                    method=Image.Resampling.LANCZOS,
                    centering=(0.5, 0.5),
                )
            if image_format == "JPEG" and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(buffer, format=image_format, **save_options)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise TranscodeError(f"Image processing failed: {exc}") from exc
    return buffer.getvalue()


def read_metadata(data: bytes) -> dict[str, Any]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            bands = image.getbands()
            return {
                "width": image.width,
                "height": image.height,
                "format": (image.format or "").lower(),
                "size": len(data),
                "has_alpha": "A" in bands or "transparency" in image.info,
                "channels": len(bands),
            }
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise TranscodeError(f"Failed to get image metadata: {exc}") from exc
