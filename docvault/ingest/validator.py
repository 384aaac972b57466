"""Document content-type validation."""
from pathlib import PurePosixPath

from docvault.core.config import settings
from docvault.core.exceptions import InvalidContentTypeError

DEFAULT_MIME_TYPE = "application/octet-stream"

# Types clients send when they don't know better
GENERIC_MIME_TYPES = frozenset({DEFAULT_MIME_TYPE, "binary/octet-stream"})

EXTENSION_MIME_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
}


def normalize_content_type(content_type: str | None) -> str | None:
    """Lower-case a content type and drop its parameters.

    ``"Text/Plain; charset=utf-8"`` becomes ``"text/plain"``; blank input
    becomes ``None``.
    """
    if not content_type:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type or None


def infer_mime_type(filename: str | None) -> str:
    """Guess a mime type from a filename extension."""
    if not filename:
        return DEFAULT_MIME_TYPE
    # Backslashes count as separators so "a\\b.pdf" still yields "pdf"
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix
    return EXTENSION_MIME_TYPES.get(suffix.lower().lstrip("."), DEFAULT_MIME_TYPE)


class MimeValidator:
    """Accepts or rejects upload content types.

    The declared header wins unless it is missing or generic, in which case
    the filename extension decides.

    Example:
        validator = MimeValidator()
        validator.resolve("application/octet-stream", "notes.txt")  # "text/plain"
        validator.resolve("image/png", "cat.png")  # raises InvalidContentTypeError
    """

    def __init__(self, allowed_types: list[str] | None = None) -> None:
        allowed = allowed_types if allowed_types is not None else settings.allowed_mime_types
        self.allowed_types = frozenset(t.lower() for t in allowed)

    def is_allowed(self, content_type: str | None) -> bool:
        media_type = normalize_content_type(content_type)
        return media_type is not None and media_type in self.allowed_types

    def resolve(self, content_type: str | None, filename: str | None = None) -> str:
        """Pick the effective mime type for an upload.

        Args:
            content_type: Declared Content-Type header (untrusted)
            filename: Client-supplied filename

        Returns:
            Normalized, accepted mime type

        Raises:
            InvalidContentTypeError: If the effective type is not accepted
        """
        media_type = normalize_content_type(content_type)
        if media_type is None or media_type in GENERIC_MIME_TYPES:
            media_type = infer_mime_type(filename)

        if media_type not in self.allowed_types:
            raise InvalidContentTypeError(
                f"Content type '{media_type}' is not accepted",
                details={"allowed": sorted(self.allowed_types)},
            )
        return media_type
