import base64
from datetime import datetime, timezone

import pytest

from pub_export.errors import CollectionError
from pub_export.utils import (
    OLDEST_TIMESTAMP,
    decode_data_url,
    media_type_to_extension,
    normalize_publication_url,
    parse_datetime_flexible,
    sanitize_filename,
    sniff_image_type,
    timestamp_or_oldest,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("What's next? Part 2/3", "What_s next_ Part 2_3"),
        ("  ..hidden..  ", "__hidden__"),
        ("", "untitled"),
        ("   ", "untitled"),
    ],
)
def test_sanitize_filename(value: str, expected: str) -> None:
    assert sanitize_filename(value) == expected


def test_sanitize_filename_truncates() -> None:
    assert len(sanitize_filename("x" * 300)) == 120


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("sample", "https://sample.substack.com"),
        ("sample.substack.com/archive", "https://sample.substack.com"),
        ("http://localhost:8080/feed", "http://localhost:8080"),
        ("https://news.example.com/p/post?x=1", "https://news.example.com"),
    ],
)
def test_normalize_publication_url(value: str, expected: str) -> None:
    assert normalize_publication_url(value) == expected


def test_normalize_publication_url_rejects_empty() -> None:
    with pytest.raises(CollectionError):
        normalize_publication_url("")


def test_parse_datetime_flexible_handles_iso_rfc_and_naive() -> None:
    assert parse_datetime_flexible("2024-03-01T00:00:00Z") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime_flexible("Fri, 01 Mar 2024 00:00:00 GMT") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime_flexible("2024-03-01") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime_flexible("yesterday") is None
    assert parse_datetime_flexible(None) is None


def test_timestamp_or_oldest() -> None:
    assert timestamp_or_oldest("garbage") == OLDEST_TIMESTAMP
    assert timestamp_or_oldest("1999-01-01T00:00:00Z") > OLDEST_TIMESTAMP


def test_decode_data_url() -> None:
    payload = base64.b64encode(b"abc").decode("ascii")

    assert decode_data_url(f"data:image/gif;base64,{payload}") == (b"abc", "image/gif")
    with pytest.raises(ValueError):
        decode_data_url("data:image/gif,plain")


def test_sniff_image_type_and_extension() -> None:
    assert sniff_image_type(b"GIF89a....") == "image/gif"
    assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_image_type(b"plain") is None
    assert media_type_to_extension("image/JPEG") == "jpg"
    assert media_type_to_extension("image/x-unknown") == "img"
