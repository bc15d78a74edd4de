"""Media type classification for journal photos and videos."""

import re
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlsplit


class MediaKind(Enum):
    """How a piece of media should be treated."""
    VIDEO = "video"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


VIDEO_EXTENSIONS = re.compile(r"\.(mp4|webm|mov|avi)$", re.IGNORECASE)
IMAGE_EXTENSIONS = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|svg)$", re.IGNORECASE)


def matches_mime_pattern(mime_type: str, pattern: str) -> bool:
    """
    Check a MIME type against a pattern.

    ``*/*`` matches anything, ``video/*`` matches any video subtype,
    anything else must match exactly. Comparison ignores case and any
    parameters such as ``; codecs=...``.
    """
    mime_type = _base_type(mime_type)
    pattern = pattern.strip().lower()
    if not mime_type:
        return False
    if pattern == "*/*":
        return True
    if pattern.endswith("/*"):
        return mime_type.startswith(pattern[:-2] + "/")
    return mime_type == pattern


def is_accepted(mime_type: Optional[str], accepted_patterns: Iterable[str]) -> bool:
    """True when the MIME type matches at least one allowlist pattern."""
    if not mime_type:
        return False
    return any(matches_mime_pattern(mime_type, p) for p in accepted_patterns)


def classify(mime_type: Optional[str] = None, url: Optional[str] = None) -> MediaKind:
    """
    Classify media as video, image or unsupported.

    The stored MIME type wins whenever it is present. The URL is only
    consulted for legacy records that were saved without metadata.
    """
    if mime_type:
        if matches_mime_pattern(mime_type, "video/*"):
            return MediaKind.VIDEO
        if matches_mime_pattern(mime_type, "image/*"):
            return MediaKind.IMAGE
        return MediaKind.UNSUPPORTED

    if url:
        return _classify_url(url)

    return MediaKind.UNSUPPORTED


def describe(kind: MediaKind) -> str:
    if kind is MediaKind.VIDEO:
        return "Video"
    if kind is MediaKind.IMAGE:
        return "Image"
    return "File"


def _classify_url(url: str) -> MediaKind:
    path = urlsplit(url).path or url
    if VIDEO_EXTENSIONS.search(path):
        return MediaKind.VIDEO
    if IMAGE_EXTENSIONS.search(path):
        return MediaKind.IMAGE
    # Legacy object paths sometimes embed the MIME type as a path segment
    lowered = path.lower()
    if "video/" in lowered:
        return MediaKind.VIDEO
    if "image/" in lowered:
        return MediaKind.IMAGE
    return MediaKind.UNSUPPORTED


def _base_type(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()
