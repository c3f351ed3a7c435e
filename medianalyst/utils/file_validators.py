"""
Upload validation for the MediAnalyst image editor.

An upload is accepted only if its extension is allowed, its size is
within limits, Pillow can decode it and its dimensions are sensible.
The MIME type forwarded to the image model is the one Pillow detects,
not the one the client declared.
"""

import io
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from medianalyst.config import settings
from medianalyst.core.errors import InvalidRequestError

# Pillow format name -> MIME type accepted by the image model
SUPPORTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}


class FileValidationError(InvalidRequestError):
    """Raised when an uploaded image is rejected."""

    default_code = "VALIDATION_ERROR"


class FileValidator:
    """Checks uploaded images before they are sent for editing."""

    MIN_DIMENSION = 16
    MAX_DIMENSION = 8192

    def __init__(
        self,
        max_file_size: Optional[int] = None,
        allowed_extensions: Optional[list[str]] = None
    ):
        self.max_file_size = max_file_size or settings.max_file_size_bytes
        self.allowed_extensions = allowed_extensions or settings.image_extensions

    def validate_file_size(self, file_content: bytes, filename: str) -> None:
        """
        Raises:
            FileValidationError: If the file is empty or too large
        """
        if not file_content:
            raise FileValidationError(f"File '{filename}' is empty", "EMPTY_FILE")
        if len(file_content) > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            raise FileValidationError(
                f"File '{filename}' exceeds maximum size of {limit_mb:g}MB",
                "FILE_TOO_LARGE"
            )

    def validate_extension(self, filename: str) -> None:
        """
        Raises:
            FileValidationError: If the extension is not an allowed image type
        """
        ext = Path(filename).suffix.lower()
        if ext not in self.allowed_extensions:
            raise FileValidationError(
                f"File extension '{ext}' not allowed. "
                f"Allowed: {', '.join(self.allowed_extensions)}",
                "INVALID_EXTENSION"
            )

    def detect_format(self, file_content: bytes) -> str:
        """
        Decode the image and return its MIME type.

        Raises:
            FileValidationError: If the data is not a supported, intact image
        """
        try:
            with Image.open(io.BytesIO(file_content)) as img:
                img.verify()
                image_format = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise FileValidationError(f"Image is corrupt or unreadable: {e}", "CORRUPT_IMAGE") from e

        mime_type = SUPPORTED_FORMATS.get(image_format or "")
        if mime_type is None:
            raise FileValidationError(f"Unsupported image format: {image_format}", "UNSUPPORTED_FORMAT")
        return mime_type

    def validate_dimensions(self, file_content: bytes) -> None:
        # verify() leaves the image unusable, so dimensions need a fresh handle
        with Image.open(io.BytesIO(file_content)) as img:
            width, height = img.size

        if min(width, height) < self.MIN_DIMENSION:
            raise FileValidationError(
                f"Image is {width}x{height}; both sides must be at least {self.MIN_DIMENSION}px",
                "IMAGE_TOO_SMALL"
            )
        if max(width, height) > self.MAX_DIMENSION:
            raise FileValidationError(
                f"Image is {width}x{height}; neither side may exceed {self.MAX_DIMENSION}px",
                "IMAGE_TOO_LARGE"
            )

    def validate_image(self, file_content: bytes, filename: str) -> str:
        """
        Run every check on an uploaded image.

        Args:
            file_content: Raw image bytes
            filename: Name the client uploaded the file under

        Returns:
            The detected MIME type

        Raises:
            FileValidationError: On the first failed check
        """
        self.validate_extension(filename)
        self.validate_file_size(file_content, filename)
        mime_type = self.detect_format(file_content)
        self.validate_dimensions(file_content)
        return mime_type


# Singleton instance for easy access
file_validator = FileValidator()
