from pathlib import Path

import pytest

from pub_export.config import AppConfig, UserDefaults, load_config
from pub_export.types import (
    CoverMode,
    ExportFormat,
    ExportMode,
    Granularity,
    MetadataField,
    OrderMode,
    Publication,
    SortDirection,
)


def test_load_config_without_path_returns_defaults() -> None:
    cfg = load_config(None)

    assert cfg == AppConfig()
    assert cfg.defaults.formats == [ExportFormat.PACKAGED]


def test_load_config_merges_yaml_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "fetch:",
                "  retries: 1",
                "export:",
                "  embed_images: true",
                "logging:",
                "  level: DEBUG",
                "defaults:",
                "  formats: [packaged, text]",
                "  granularity: per_article",
                "  metadata_fields: [title, tags]",
                "unknown_section:",
                "  ignored: true",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.fetch.retries == 1
    assert cfg.fetch.timeout_seconds == 20.0
    assert cfg.export.embed_images is True
    assert cfg.logging.level == "DEBUG"
    assert cfg.defaults.formats == [ExportFormat.PACKAGED, ExportFormat.TEXT]
    assert cfg.defaults.granularity == Granularity.PER_ARTICLE
    assert cfg.defaults.metadata_fields == [MetadataField.TITLE, MetadataField.TAGS]
    assert cfg.defaults.cover_mode == CoverMode.AUTHOR


def test_load_config_rejects_unknown_enum_value(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("defaults:\n  granularity: weekly\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(str(path))


def test_build_request_applies_defaults_and_overrides() -> None:
    defaults = UserDefaults(sort_direction=SortDirection.ASC, cover_mode=CoverMode.CUSTOM)
    publication = Publication(url="https://sample.example.com", title="Sample")

    request = defaults.build_request(publication, [], "out", formats=[ExportFormat.TEXT])

    assert request.mode == ExportMode.ENTIRE_PROFILE
    assert request.order_mode == OrderMode.DATE
    assert request.formats == {ExportFormat.TEXT}
    assert request.sort_direction == SortDirection.ASC
    assert request.cover_mode == CoverMode.CUSTOM
    assert request.metadata_fields == {MetadataField.AUTHOR, MetadataField.PUBLISHED_AT, MetadataField.URL}


def test_build_request_switches_modes_from_selection() -> None:
    publication = Publication(url="https://sample.example.com", title="Sample")

    request = UserDefaults().build_request(
        publication,
        [],
        "out",
        selected_article_ids=["A", "C"],
        manual_order=["C", "A"],
    )

    assert request.mode == ExportMode.SPECIFIC_POSTS
    assert request.selected_article_ids == {"A", "C"}
    assert request.order_mode == OrderMode.MANUAL
    assert request.manual_order == ["C", "A"]
