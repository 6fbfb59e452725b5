"""Tests for the export orchestrator."""

from __future__ import annotations

import zipfile
from pathlib import Path

import httpx
import pytest

from pub_export import runner
from pub_export.config import AppConfig
from pub_export.errors import ConfigurationError
from pub_export.runner import CANCELLED_REASON, NO_OUTPUT_WARNING, CancelToken, run_export
from pub_export.types import (
    Article,
    CoverMode,
    ExportFormat,
    ExportMode,
    ExportRequest,
    Granularity,
    MetadataField,
    OrderMode,
    Publication,
)

PUBLICATION = Publication(url="https://sample.example.com", title="Sample", author="Ada")
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _article(article_id: str, title: str, published_at: str, body: str | None = "<p>Body text</p>") -> Article:
    return Article(
        id=article_id,
        title=title,
        published_at=published_at,
        canonical_url=f"https://sample.example.com/p/{article_id.lower()}",
        body_markup=body,
    )


def _articles() -> list[Article]:
    return [
        _article("A", "Alpha", "2024-01-01T00:00:00Z"),
        _article("B", "Beta", "2024-03-01T00:00:00Z"),
        _article("C", "Gamma", "2024-02-01T00:00:00Z"),
    ]


def _request(tmp_path: Path, articles: list[Article] | None = None, **overrides) -> ExportRequest:
    values = {
        "publication": PUBLICATION,
        "articles": articles or _articles(),
        "output_directory": str(tmp_path / "out"),
        "formats": {ExportFormat.PACKAGED, ExportFormat.TEXT},
        "metadata_fields": {MetadataField.AUTHOR},
    }
    values.update(overrides)
    return ExportRequest(**values)


def _config() -> AppConfig:
    cfg = AppConfig()
    cfg.fetch.retries = 0
    return cfg


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404)


def test_per_article_export_writes_one_container_plus_one_text_file_per_article(tmp_path: Path) -> None:
    request = _request(tmp_path, granularity=Granularity.PER_ARTICLE)

    result = run_export(request, _config())

    assert result.succeeded_article_ids == ("B", "C", "A")
    assert result.failed == ()
    assert len(result.output_files) == 1 + 3
    names = sorted(Path(path).name for path in result.output_files)
    assert names == ["01 - Beta.txt", "02 - Gamma.txt", "03 - Alpha.txt", "Sample.epub"]
    assert all(Path(path).exists() for path in result.output_files)


def test_combined_export_writes_exactly_two_files(tmp_path: Path) -> None:
    result = run_export(_request(tmp_path, granularity=Granularity.COMBINED), _config())

    assert len(result.output_files) == 2
    assert sorted(Path(path).name for path in result.output_files) == ["Sample - combined.txt", "Sample.epub"]
    with zipfile.ZipFile(tmp_path / "out" / "Sample.epub") as zf:
        first = zf.infolist()[0]
        assert first.filename == "mimetype"
        assert first.compress_type == zipfile.ZIP_STORED


def test_failed_fetch_is_isolated_and_partition_is_complete(tmp_path: Path) -> None:
    articles = _articles() + [_article("M", "Missing", "2024-04-01T00:00:00Z", body=None)]
    request = _request(tmp_path, articles, formats={ExportFormat.TEXT})

    result = run_export(request, _config(), transport=httpx.MockTransport(_not_found))

    assert result.succeeded_article_ids == ("B", "C", "A")
    assert [failure.article_id for failure in result.failed] == ["M"]
    assert result.failed[0].reason.startswith("fetch failed: HTTP 404")
    ids = set(result.succeeded_article_ids) | {failure.article_id for failure in result.failed}
    assert ids == {"A", "B", "C", "M"}


def test_missing_bodies_are_fetched_before_normalizing(tmp_path: Path) -> None:
    page = "<html><body><div class='available-content'><p>Fetched body</p></div></body></html>"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/p/m"
        return httpx.Response(200, text=page, headers={"content-type": "text/html"})

    articles = [_article("M", "Missing", "2024-04-01T00:00:00Z", body=None)]
    request = _request(tmp_path, articles, formats={ExportFormat.TEXT})

    result = run_export(request, _config(), transport=httpx.MockTransport(handler))

    assert result.succeeded_article_ids == ("M",)
    text = (tmp_path / "out" / "Sample - combined.txt").read_text(encoding="utf-8")
    assert "Fetched body" in text


def test_manual_order_drives_text_file_numbering(tmp_path: Path) -> None:
    request = _request(
        tmp_path,
        mode=ExportMode.SPECIFIC_POSTS,
        selected_article_ids={"A", "C"},
        order_mode=OrderMode.MANUAL,
        manual_order=["A", "C"],
        formats={ExportFormat.TEXT},
        granularity=Granularity.PER_ARTICLE,
    )

    result = run_export(request, _config())

    assert result.succeeded_article_ids == ("A", "C")
    assert [Path(path).name for path in result.output_files] == ["01 - Alpha.txt", "02 - Gamma.txt"]


def test_unknown_selected_id_becomes_warning(tmp_path: Path) -> None:
    request = _request(tmp_path, mode=ExportMode.SPECIFIC_POSTS, selected_article_ids={"A", "Z"})

    result = run_export(request, _config())

    assert result.succeeded_article_ids == ("A",)
    assert "unknown article id: Z" in result.warnings


def test_selection_matching_nothing_is_configuration_error(tmp_path: Path) -> None:
    request = _request(tmp_path, mode=ExportMode.SPECIFIC_POSTS, selected_article_ids={"Z"})

    with pytest.raises(ConfigurationError):
        run_export(request, _config())


def test_custom_cover_missing_fails_before_any_work(tmp_path: Path, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(runner, "normalize", lambda *args: calls.append(args))
    request = _request(tmp_path, cover_mode=CoverMode.CUSTOM, formats={ExportFormat.PACKAGED})

    with pytest.raises(ConfigurationError, match="cover"):
        run_export(request, _config())

    assert calls == []
    assert not (tmp_path / "out").exists()


def test_custom_cover_is_not_required_for_text_only(tmp_path: Path) -> None:
    request = _request(tmp_path, cover_mode=CoverMode.CUSTOM, formats={ExportFormat.TEXT})

    result = run_export(request, _config())

    assert len(result.succeeded_article_ids) == 3


def test_custom_cover_is_embedded(tmp_path: Path) -> None:
    request = _request(
        tmp_path,
        cover_mode=CoverMode.CUSTOM,
        custom_cover=PNG_BYTES,
        formats={ExportFormat.PACKAGED},
    )

    run_export(request, _config())

    with zipfile.ZipFile(tmp_path / "out" / "Sample.epub") as zf:
        assert zf.read("EPUB/images/cover.png") == PNG_BYTES


@pytest.mark.parametrize(
    "overrides",
    [{"formats": set()}, {"output_directory": None}, {"output_directory": ""}],
)
def test_preflight_configuration_errors(tmp_path: Path, overrides: dict) -> None:
    with pytest.raises(ConfigurationError):
        run_export(_request(tmp_path, **overrides), _config())


def test_unwritable_output_directory_is_configuration_error(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        run_export(_request(tmp_path, output_directory=str(blocker / "out")), _config())


def test_cancel_before_start_marks_everything_cancelled(tmp_path: Path) -> None:
    cancel = CancelToken()
    cancel.cancel()

    result = run_export(_request(tmp_path), _config(), cancel=cancel)

    assert result.succeeded_article_ids == ()
    assert [failure.reason for failure in result.failed] == [CANCELLED_REASON] * 3
    assert result.output_files == ()
    assert list((tmp_path / "out").iterdir()) == []


def test_cancel_lets_in_flight_article_finish(tmp_path: Path, monkeypatch) -> None:
    cancel = CancelToken()
    calls = []
    real_normalize = runner.normalize

    def normalize_then_cancel(*args):
        calls.append(args[0].id)
        document = real_normalize(*args)
        cancel.cancel()
        return document

    monkeypatch.setattr(runner, "normalize", normalize_then_cancel)
    cfg = _config()
    cfg.export.concurrency = 1

    result = run_export(_request(tmp_path), cfg, cancel=cancel)

    assert calls == ["B"]
    assert [failure.article_id for failure in result.failed] == ["B", "C", "A"]
    assert {failure.reason for failure in result.failed} == {CANCELLED_REASON}
    assert result.output_files == ()


def test_degraded_articles_are_exported_with_warning(tmp_path: Path) -> None:
    articles = [_article("E", "Empty", "2024-01-01T00:00:00Z", body="")]

    result = run_export(_request(tmp_path, articles, formats={ExportFormat.TEXT}), _config())

    assert result.succeeded_article_ids == ("E",)
    assert "degraded normalization: E" in result.warnings


def test_no_normalized_articles_writes_nothing(tmp_path: Path) -> None:
    articles = [_article("M", "Missing", "2024-04-01T00:00:00Z", body=None)]

    result = run_export(_request(tmp_path, articles), _config(), transport=httpx.MockTransport(_not_found))

    assert result.succeeded_article_ids == ()
    assert NO_OUTPUT_WARNING in result.warnings
    assert result.output_files == ()
    assert list((tmp_path / "out").iterdir()) == []


def test_author_cover_failure_is_a_warning(tmp_path: Path) -> None:
    publication = Publication(
        url="https://sample.example.com",
        title="Sample",
        author="Ada",
        author_cover_url="https://cdn.example.com/ada.png",
    )
    request = _request(tmp_path, publication=publication, formats={ExportFormat.PACKAGED})

    result = run_export(request, _config(), transport=httpx.MockTransport(_not_found))

    assert any(warning.startswith("cover setup issue:") for warning in result.warnings)
    assert [Path(path).name for path in result.output_files] == ["Sample.epub"]


def test_write_failure_for_one_output_keeps_the_others(tmp_path: Path) -> None:
    (tmp_path / "out" / "Sample.epub").mkdir(parents=True)

    result = run_export(_request(tmp_path), _config())

    assert result.succeeded_article_ids == ("B", "C", "A")
    assert [Path(path).name for path in result.output_files] == ["Sample - combined.txt"]
    assert any(warning.startswith("failed to write Sample.epub") for warning in result.warnings)


def test_embedded_images_are_fetched(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    articles = [
        _article("I", "Illustrated", "2024-01-01T00:00:00Z", body="<p>Look</p><img src='https://cdn.example.com/a.png' alt='A'/>")
    ]
    cfg = _config()
    cfg.export.embed_images = True

    run_export(_request(tmp_path, articles, formats={ExportFormat.PACKAGED}), cfg, transport=httpx.MockTransport(handler))

    with zipfile.ZipFile(tmp_path / "out" / "Sample.epub") as zf:
        assert "EPUB/images/img-001.png" in zf.namelist()
