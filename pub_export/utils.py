"""
Shared helpers for names, URLs, timestamps and image payloads.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import re
from urllib.parse import urlparse

from .errors import CollectionError


OLDEST_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)

_FILENAME_UNSAFE_RE = re.compile(r"[^A-Za-z0-9 _-]")
_SPACES_RE = re.compile(r" {2,}")
_WHITESPACE_RE = re.compile(r"\s+")

_MEDIA_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


def sanitize_filename(value: str, max_length: int = 120) -> str:
    """Reduce a title to a portable file name stem.

    Anything other than ASCII letters, digits, space, dash and underscore
    becomes an underscore; runs of spaces collapse and surrounding dots and
    spaces are trimmed.

    Examples:
        >>> sanitize_filename("What's next? Part 2/3")
        'What_s next_ Part 2_3'
    """
    cleaned = _FILENAME_UNSAFE_RE.sub("_", value)
    cleaned = _SPACES_RE.sub(" ", cleaned).strip().strip(".")
    if not cleaned:
        return "untitled"
    return cleaned[:max_length].rstrip()


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_publication_url(value: str) -> str:
    """Turn user input into the publication's base URL.

    Bare names map to a substack.com subdomain, bare hosts get https.

    Raises:
        CollectionError: If the input is empty or has no usable host
    """
    trimmed = value.strip()
    if not trimmed:
        raise CollectionError("Publication URL cannot be empty.")

    if trimmed.startswith(("http://", "https://")):
        candidate = trimmed
    elif "." in trimmed:
        candidate = f"https://{trimmed}"
    else:
        candidate = f"https://{trimmed}.substack.com"

    parsed = urlparse(candidate)
    if not parsed.hostname:
        raise CollectionError("Publication URL must include a valid host.")
    base = f"{parsed.scheme}://{parsed.hostname}"
    if parsed.port:
        base += f":{parsed.port}"
    return base


def parse_datetime_flexible(value: str | None) -> datetime | None:
    """Parse an ISO 8601 or RFC 2822 timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None when nothing parses.
    """
    if not value:
        return None
    text = value.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_or_oldest(value: str | None) -> datetime:
    return parse_datetime_flexible(value) or OLDEST_TIMESTAMP


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Decode a base64 `data:` URL into (bytes, media type).

    Raises:
        ValueError: If the URL is not a base64 data URL or fails to decode
    """
    meta, sep, body = data_url.partition(",")
    if not sep:
        raise ValueError("Invalid data URL format.")
    if not meta.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported.")
    media_type = meta.removeprefix("data:").removesuffix(";base64") or "application/octet-stream"
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Failed to decode base64 cover image.") from exc
    return data, media_type


def sniff_image_type(data: bytes) -> str | None:
    """Identify common raster formats by their magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def media_type_to_extension(media_type: str) -> str:
    return _MEDIA_EXTENSIONS.get(media_type.lower(), "img")
