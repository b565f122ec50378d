"""Failure taxonomy for the image pipeline.

Every error carries a stable ``code`` that the HTTP layer reports next to the
message. A proxy read of a missing object is not an error; it returns ``None``.
"""


class ImageServiceError(Exception):
    code = "IMAGE_ERROR"


class ImageValidationError(ImageServiceError):
    """Caller input problem. Never retried."""

    code = "VALIDATION_ERROR"


class UnsupportedFormatError(ImageValidationError):
    code = "UNSUPPORTED_FORMAT"


class FileTooLargeError(ImageValidationError):
    code = "FILE_TOO_LARGE"


class EmptyBufferError(ImageValidationError):
    code = "EMPTY_BUFFER"


class TranscodeError(ImageServiceError):
    code = "TRANSCODE_FAILED"


class StorageConfigError(ImageServiceError):
    code = "STORAGE_CONFIG_ERROR"


class StorageAuthError(ImageServiceError):
    code = "STORAGE_AUTH_FAILED"


class StorageError(ImageServiceError):
    code = "STORAGE_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
