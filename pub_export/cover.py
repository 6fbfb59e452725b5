"""
Cover resolution for packaged output.

The author mode fetches the publication image when one is known; the
custom mode uses caller-supplied bytes or a base64 data URL. A missing
custom cover is a configuration error, checked before any article work.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from .collect.fetcher import fetch_url_async
from .errors import ConfigurationError
from .types import CoverMode
from .utils import decode_data_url, media_type_to_extension, sniff_image_type


@dataclass(frozen=True)
class ImageAsset:
    """Image bytes with their media type and file extension."""
    data: bytes
    media_type: str
    extension: str


class CoverUnavailable(RuntimeError):
    """Raised when the author cover cannot be fetched or decoded."""


def image_asset(data: bytes, media_type_hint: str | None = None) -> ImageAsset:
    """Build an ImageAsset, sniffing the media type from magic bytes.

    Raises:
        ValueError: If the image bytes are empty
    """
    if not data:
        raise ValueError("Cover image bytes are empty.")
    if media_type_hint and not media_type_hint.startswith("image/"):
        media_type_hint = None
    media_type = sniff_image_type(data) or media_type_hint or "image/jpeg"
    return ImageAsset(data=data, media_type=media_type, extension=media_type_to_extension(media_type))


def custom_cover_asset(custom_cover: bytes | str | None) -> ImageAsset:
    """Decode a caller-supplied custom cover.

    Raises:
        ConfigurationError: If the cover is missing or cannot be decoded
    """
    if custom_cover is None or len(custom_cover) == 0:
        raise ConfigurationError("Custom cover mode selected but no cover image supplied.")
    try:
        if isinstance(custom_cover, str):
            data, hint = decode_data_url(custom_cover)
            return image_asset(data, hint)
        return image_asset(bytes(custom_cover))
    except ValueError as exc:
        raise ConfigurationError(f"Custom cover could not be read: {exc}") from exc


async def resolve_cover(
    cover_mode: CoverMode,
    author_cover_url: str | None,
    custom_cover: bytes | str | None,
    client: httpx.AsyncClient | None = None,
    retries: int = 0,
) -> ImageAsset | None:
    """Resolve the front-cover image.

    Returns None in author mode when no cover URL is known; the packaged
    renderer then generates a text-only title page.

    Raises:
        ConfigurationError: In custom mode when the cover is missing or unreadable
        CoverUnavailable: In author mode when the cover URL cannot be fetched
    """
    if cover_mode == CoverMode.CUSTOM:
        return custom_cover_asset(custom_cover)

    if not author_cover_url:
        return None
    if client is None:
        raise CoverUnavailable("no HTTP client available to fetch the author cover")

    result = await fetch_url_async(client, author_cover_url, retries)
    if not result.ok:
        raise CoverUnavailable(result.error or "fetch failed")
    try:
        return image_asset(result.content, result.media_type)
    except ValueError as exc:
        raise CoverUnavailable(str(exc)) from exc
