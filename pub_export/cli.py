"""
Command-line interface for the publication exporter.

Uses Typer to expose the two boundary operations: `list` prints a
publication's articles, `export` builds an ExportRequest from configured
user defaults plus CLI overrides and runs it.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from .collect import list_articles
from .config import AppConfig, load_config
from .errors import CollectionError, ConfigurationError
from .logging_utils import setup_logging
from .runner import run_export, validate_request
from .types import (
    CoverMode,
    ExportFormat,
    ExportMode,
    ExportResult,
    Granularity,
    MetadataField,
    SortDirection,
)

app = typer.Typer(add_completion=False)
console = Console()


@app.command("list")
def list_command(
    url: str = typer.Argument(..., help="Publication URL or name."),
    config: Path | None = typer.Option(None, "--config", "-c", exists=True),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
):
    """List a publication's articles."""
    cfg = _load(config, log_level)
    setup_logging(cfg.logging, None)
    try:
        listing = list_articles(url, cfg)
    except CollectionError as exc:
        _fail(str(exc))

    publication = listing.publication
    console.print(f"[bold]{publication.title}[/bold]")
    console.print(f"URL: {publication.url}")
    console.print(f"Author: {publication.author or 'Unknown'}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Published")
    table.add_column("Title")
    table.add_column("Body")
    for article in listing.articles:
        table.add_row(
            article.id,
            article.published_at or "",
            article.title,
            "yes" if article.body_markup is not None else "fetch",
        )
    console.print(table)
    console.print(f"{len(listing.articles)} articles")


@app.command()
def export(
    url: str = typer.Argument(..., help="Publication URL or name."),
    output: Path = typer.Option(..., "--output", "-o", help="Output directory."),
    formats: list[ExportFormat] | None = typer.Option(None, "--format", "-f", help="Output format; repeatable."),
    granularity: Granularity | None = typer.Option(None, "--granularity", help="Plain-text file granularity."),
    mode: ExportMode | None = typer.Option(None, "--mode", help="Export every article or a selection."),
    select: list[str] | None = typer.Option(None, "--select", "-s", help="Article id to export; repeatable."),
    manual: list[str] | None = typer.Option(
        None, "--manual", help="Article id in manual export order; repeatable."
    ),
    sort: SortDirection | None = typer.Option(None, "--sort", help="Publish date sort direction."),
    cover: CoverMode | None = typer.Option(None, "--cover", help="Cover source for packaged output."),
    cover_file: Path | None = typer.Option(
        None, "--cover-file", exists=True, readable=True, help="Custom cover image."
    ),
    fields: list[MetadataField] | None = typer.Option(None, "--field", help="Metadata field to include; repeatable."),
    config: Path | None = typer.Option(None, "--config", "-c", exists=True),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    log_file: bool | None = typer.Option(
        None, "--log-file/--no-log-file", help="Enable or disable file logging."
    ),
):
    """Export a publication to packaged and/or plain-text files.

    Args:
        url: Publication URL or bare name
        output: Directory receiving output files
        formats: Output formats (defaults from config)
        granularity: per_article or combined plain-text output
        mode: entire_profile or specific_posts
        select: Selected article ids
        manual: Manual export order; implies selection of the listed ids
        sort: asc or desc by publish date
        cover: author or custom cover
        cover_file: Image file used as the custom cover; implies --cover custom
        fields: Metadata fields rendered per article
        config: Optional path to YAML config file
        progress: Whether to show progress bar
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Enable/disable file logging
    """
    cfg = _load(config, log_level)
    if log_file is not None:
        cfg.logging.file = log_file
    setup_logging(cfg.logging, None)

    try:
        listing = list_articles(url, cfg)
        selected = list(select or []) or list(manual or [])
        request = cfg.defaults.build_request(
            listing.publication,
            listing.articles,
            str(output),
            selected_article_ids=selected,
            manual_order=manual or [],
            formats=formats or None,
            granularity=granularity,
            cover_mode=cover or (CoverMode.CUSTOM if cover_file else None),
            custom_cover=cover_file.read_bytes() if cover_file else None,
            metadata_fields=fields or None,
            sort_direction=sort,
        )
        if mode is not None:
            request = replace(request, mode=mode)
        # The log file lives in the output directory, which a rejected request must not create.
        validate_request(request)
        if cfg.logging.file:
            setup_logging(cfg.logging, output)
        result = _run(request, cfg, progress)
    except (CollectionError, ConfigurationError) as exc:
        _fail(str(exc))

    _print_result(result)


def _load(config: Path | None, log_level: str | None) -> AppConfig:
    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.logging.level = log_level
    return cfg


def _run(request, cfg: AppConfig, show_progress: bool) -> ExportResult:
    if not show_progress:
        return run_export(request, cfg)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
    )
    with progress:
        return run_export(request, cfg, progress=progress)


def _print_result(result: ExportResult) -> None:
    console.print(
        f"Succeeded: {len(result.succeeded_article_ids)}  Failed: {len(result.failed)}"
    )
    for failure in result.failed:
        console.print(f"[red]failed[/red] {failure.article_id}: {failure.reason}")
    for path in result.output_files:
        console.print(f"Output: {path}")
    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {warning}")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
