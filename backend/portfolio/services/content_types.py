"""Content-type normalisation and extension-based inference for uploads."""

from __future__ import annotations

from pathlib import PurePath

OCTET_STREAM = "application/octet-stream"

EXTENSION_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogg": "video/ogg",
    ".avi": "video/avi",
    ".mov": "video/quicktime",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_DOCUMENT_TYPES = frozenset(
    {
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)


def normalize(content_type: str | None) -> str:
    """Lowercase and drop parameters: ``Image/JPEG; q=1`` -> ``image/jpeg``."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def suffix_of(filename: str | None) -> str:
    return PurePath(filename or "").suffix.lower()


def resolve(content_type: str | None, filename: str | None) -> str:
    """
    Return the effective content type for an upload.

    A declared type always wins. Only when none is given is the extension
    consulted, falling back to ``application/octet-stream``.
    """
    declared = normalize(content_type)
    if declared:
        return declared
    return EXTENSION_TYPES.get(suffix_of(filename), OCTET_STREAM)


def category_of(content_type: str) -> str:
    """Bucket a content type into images, documents, videos or others."""
    if content_type.startswith("image/"):
        return "images"
    if content_type.startswith("video/"):
        return "videos"
    if content_type in _DOCUMENT_TYPES:
        return "documents"
    return "others"


def format_size(num_bytes: int) -> str:
    """Human-readable size using binary units, e.g. ``2.0 MB``."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    size = num_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
