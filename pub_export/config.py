"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- FetchConfig: HTTP fetching settings for the article collector
- ExportConfig: Export pipeline tuning
- LoggingConfig: Logging behavior
- UserDefaults: Preferred export settings used to build requests
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import yaml

from .types import (
    Article,
    CoverMode,
    ExportFormat,
    ExportMode,
    ExportRequest,
    Granularity,
    MetadataField,
    OrderMode,
    Publication,
    SortDirection,
)


@dataclass
class FetchConfig:
    """Configuration for HTTP fetching.

    Attributes:
        timeout_seconds: HTTP request timeout
        retries: Number of retry attempts for failed requests
        user_agent: HTTP User-Agent header string
        trust_env: Whether to respect system proxy settings
        concurrency: Maximum concurrent article page fetches
    """

    timeout_seconds: float = 20.0
    retries: int = 3
    user_agent: str = "pub-export/0.1 (+offline reader)"
    trust_env: bool = True
    concurrency: int = 4


@dataclass
class ExportConfig:
    """Configuration for the export pipeline.

    Attributes:
        concurrency: Maximum articles normalized at the same time
        embed_images: Whether to fetch and embed article images in packaged output
        language: Language code declared in packaged output
        estimate_reading_time: Estimate reading time from word count when missing
    """

    concurrency: int = 4
    embed_images: bool = False
    language: str = "en"
    estimate_reading_time: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to a file in the output directory
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "export.jsonl"


@dataclass
class UserDefaults:
    """Preferred export settings, persisted by the caller between sessions.

    The pipeline never reads these; they only seed `build_request`.
    """

    formats: list[ExportFormat] = field(default_factory=lambda: [ExportFormat.PACKAGED])
    granularity: Granularity = Granularity.COMBINED
    cover_mode: CoverMode = CoverMode.AUTHOR
    metadata_fields: list[MetadataField] = field(
        default_factory=lambda: [
            MetadataField.AUTHOR,
            MetadataField.PUBLISHED_AT,
            MetadataField.URL,
        ]
    )
    sort_direction: SortDirection = SortDirection.DESC

    def build_request(
        self,
        publication: Publication,
        articles: list[Article],
        output_directory: str | None,
        *,
        selected_article_ids: Iterable[str] = (),
        manual_order: Iterable[str] = (),
        formats: Iterable[ExportFormat] | None = None,
        granularity: Granularity | None = None,
        cover_mode: CoverMode | None = None,
        custom_cover: bytes | str | None = None,
        metadata_fields: Iterable[MetadataField] | None = None,
        sort_direction: SortDirection | None = None,
    ) -> ExportRequest:
        """Build an ExportRequest from these defaults plus explicit choices.

        A non-empty selection switches to `specific_posts`; a non-empty
        manual order switches to manual ordering.
        """
        selected = set(selected_article_ids)
        manual = list(manual_order)
        return ExportRequest(
            publication=publication,
            articles=list(articles),
            output_directory=output_directory,
            mode=ExportMode.SPECIFIC_POSTS if selected else ExportMode.ENTIRE_PROFILE,
            selected_article_ids=selected,
            order_mode=OrderMode.MANUAL if manual else OrderMode.DATE,
            manual_order=manual,
            sort_direction=sort_direction or self.sort_direction,
            formats=set(formats if formats is not None else self.formats),
            granularity=granularity or self.granularity,
            cover_mode=cover_mode or self.cover_mode,
            custom_cover=custom_cover,
            metadata_fields=set(
                metadata_fields if metadata_fields is not None else self.metadata_fields
            ),
        )


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    fetch: FetchConfig = field(default_factory=FetchConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    defaults: UserDefaults = field(default_factory=UserDefaults)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = _asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _asdict(cfg: AppConfig) -> dict[str, Any]:
    """Convert AppConfig to nested dictionary."""
    return {
        "fetch": {
            "timeout_seconds": cfg.fetch.timeout_seconds,
            "retries": cfg.fetch.retries,
            "user_agent": cfg.fetch.user_agent,
            "trust_env": cfg.fetch.trust_env,
            "concurrency": cfg.fetch.concurrency,
        },
        "export": {
            "concurrency": cfg.export.concurrency,
            "embed_images": cfg.export.embed_images,
            "language": cfg.export.language,
            "estimate_reading_time": cfg.export.estimate_reading_time,
        },
        "logging": {
            "level": cfg.logging.level,
            "console": cfg.logging.console,
            "file": cfg.logging.file,
            "format": cfg.logging.format,
            "filename": cfg.logging.filename,
        },
        "defaults": {
            "formats": [item.value for item in cfg.defaults.formats],
            "granularity": cfg.defaults.granularity.value,
            "cover_mode": cfg.defaults.cover_mode.value,
            "metadata_fields": [item.value for item in cfg.defaults.metadata_fields],
            "sort_direction": cfg.defaults.sort_direction.value,
        },
    }


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary.

    Raises:
        ValueError: If an enum-valued default names an unknown option
    """
    defaults = data["defaults"]
    return AppConfig(
        fetch=FetchConfig(**data["fetch"]),
        export=ExportConfig(**data["export"]),
        logging=LoggingConfig(**data["logging"]),
        defaults=UserDefaults(
            formats=[ExportFormat(item) for item in defaults["formats"]],
            granularity=Granularity(defaults["granularity"]),
            cover_mode=CoverMode(defaults["cover_mode"]),
            metadata_fields=[MetadataField(item) for item in defaults["metadata_fields"]],
            sort_direction=SortDirection(defaults["sort_direction"]),
        ),
    )
