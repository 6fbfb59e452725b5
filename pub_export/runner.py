"""
Export orchestration.

This module drives one export job through its stages:
1. Validate the request (formats, output directory, selection, custom cover)
2. Resolve the export sequence
3. Fetch missing article bodies and normalize articles concurrently
4. Render the packaged container and/or plain-text files
5. Return an ExportResult partitioning the sequence into succeeded/failed

Only configuration errors raise; every per-article and per-output problem
is captured in the returned ExportResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import asyncio
import logging
import os
from pathlib import Path
import threading

import httpx
from rich.progress import Progress

from .collect.collector import fetch_article
from .collect.fetcher import build_async_client, fetch_url_async
from .config import AppConfig
from .cover import CoverUnavailable, ImageAsset, custom_cover_asset, image_asset, resolve_cover
from .errors import ArticleFetchError, ConfigurationError
from .logging_utils import get_logger, log_event
from .normalize import normalize
from .ordering import resolve_order, unknown_article_ids, validate_selection
from .render.epub import render_epub
from .render.text import render_text
from .types import (
    Article,
    BlockKind,
    CoverMode,
    ExportFailure,
    ExportFormat,
    ExportRequest,
    ExportResult,
    NormalizedDocument,
)
from .utils import sanitize_filename


CANCELLED_REASON = "cancelled"
NO_OUTPUT_WARNING = "no articles exported; no output generated"


class CancelToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _Outcome:
    article_id: str
    document: NormalizedDocument | None = None
    reason: str | None = None


@dataclass
class _JobState:
    """Mutable bookkeeping shared by the stages of one job."""
    warnings: list[str] = field(default_factory=list)
    output_files: list[str] = field(default_factory=list)


def run_export(
    request: ExportRequest,
    cfg: AppConfig | None = None,
    *,
    cancel: CancelToken | None = None,
    progress: Progress | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ExportResult:
    """Run one export job.

    Args:
        request: Fully resolved export request
        cfg: Application configuration (defaults when None)
        cancel: Token checked between article-processing steps
        progress: Optional rich progress display
        transport: httpx transport override, used by tests

    Returns:
        ExportResult with succeeded/failed partition, written files and warnings

    Raises:
        ConfigurationError: If the request fails pre-flight validation
    """
    cfg = cfg or AppConfig()
    cancel = cancel or CancelToken()
    logger = get_logger()

    state = _JobState()
    order, custom_cover = _validate(request, state)
    output_dir = _prepare_output_dir(request.output_directory)

    log_event(
        logger,
        "Export start",
        event="export_start",
        publication=request.publication.url,
        articles=len(order),
        formats=sorted(item.value for item in request.formats),
        granularity=request.granularity.value,
        output=str(output_dir),
    )
    return asyncio.run(
        _run_export_async(request, order, custom_cover, output_dir, cfg, cancel, progress, transport, state, logger)
    )


def validate_request(request: ExportRequest) -> None:
    """Run the pre-flight checks of `run_export` without touching the filesystem.

    Raises:
        ConfigurationError: If `run_export` would reject the request
    """
    _validate(request, _JobState())


def _validate(request: ExportRequest, state: _JobState) -> tuple[list[str], ImageAsset | None]:
    if not request.formats:
        raise ConfigurationError("No output format selected.")
    if not request.output_directory:
        raise ConfigurationError("No output directory selected.")
    validate_selection(request)

    custom_cover = None
    if ExportFormat.PACKAGED in request.formats and request.cover_mode == CoverMode.CUSTOM:
        custom_cover = custom_cover_asset(request.custom_cover)

    for article_id in unknown_article_ids(request.articles, request):
        state.warnings.append(f"unknown article id: {article_id}")
    order = resolve_order(request.articles, request)
    if not order:
        raise ConfigurationError("No articles matched the export selection.")
    return order, custom_cover


def _prepare_output_dir(output_directory: str) -> Path:
    output_dir = Path(output_directory).expanduser()
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Output directory cannot be created: {exc}") from exc
    if not output_dir.is_dir() or not os.access(output_dir, os.W_OK):
        raise ConfigurationError(f"Output directory is not writable: {output_dir}")
    return output_dir


async def _run_export_async(
    request: ExportRequest,
    order: list[str],
    custom_cover: ImageAsset | None,
    output_dir: Path,
    cfg: AppConfig,
    cancel: CancelToken,
    progress: Progress | None,
    transport: httpx.AsyncBaseTransport | None,
    state: _JobState,
    logger: logging.Logger,
) -> ExportResult:
    by_id = {article.id: article for article in request.articles}
    articles = [by_id[article_id] for article_id in order]

    async with build_async_client(cfg.fetch, transport) as client:
        outcomes = await _process_articles(articles, request, cfg, client, cancel, progress, logger)

        if cancel.cancelled:
            return _cancelled_result(outcomes, state, logger)

        documents = [outcome.document for outcome in outcomes if outcome.document is not None]
        for doc in documents:
            if doc.degraded:
                state.warnings.append(f"degraded normalization: {doc.article_id}")
                log_event(logger, "Article degraded", logging.WARNING, event="article_degraded", article_id=doc.article_id)

        if not documents:
            state.warnings.append(NO_OUTPUT_WARNING)
            return _build_result(outcomes, state, logger)

        cover = None
        images: dict[str, ImageAsset] = {}
        if ExportFormat.PACKAGED in request.formats:
            cover = custom_cover or await _author_cover(request, client, cfg, state)
            if cfg.export.embed_images:
                images = await _fetch_images(documents, client, cfg, state)

    # Rendering writes files, so this is the last point a cancel is honored.
    if cancel.cancelled:
        return _cancelled_result(outcomes, state, logger)

    if ExportFormat.PACKAGED in request.formats:
        _write_packaged(request, documents, cover, images, output_dir, cfg, state, logger)
    if ExportFormat.TEXT in request.formats:
        await _write_text(request, documents, output_dir, state, logger)

    return _build_result(outcomes, state, logger)


async def _process_articles(
    articles: list[Article],
    request: ExportRequest,
    cfg: AppConfig,
    client: httpx.AsyncClient,
    cancel: CancelToken,
    progress: Progress | None,
    logger: logging.Logger,
) -> list[_Outcome]:
    """Fetch and normalize articles concurrently; results keep input order."""
    fetch_sem = asyncio.Semaphore(max(1, cfg.fetch.concurrency))
    normalize_sem = asyncio.Semaphore(max(1, cfg.export.concurrency))
    task_id = progress.add_task("Normalize", total=len(articles)) if progress else None

    async def _process_single(article: Article) -> _Outcome:
        try:
            if article.body_markup is None and not cancel.cancelled:
                async with fetch_sem:
                    article = await fetch_article(client, article, cfg.fetch.retries)
            async with normalize_sem:
                if cancel.cancelled:
                    return _Outcome(article.id, reason=CANCELLED_REASON)
                document = await asyncio.to_thread(
                    normalize,
                    article,
                    request.publication.author,
                    cfg.export.estimate_reading_time,
                )
            return _Outcome(article.id, document=document)
        except ArticleFetchError as exc:
            reason = f"fetch failed: {exc}"
        except Exception as exc:  # noqa: BLE001
            reason = f"{type(exc).__name__}: {exc}"
        finally:
            if progress is not None and task_id is not None:
                progress.advance(task_id, 1)
        log_event(logger, "Article failed", logging.WARNING, event="article_failed", article_id=article.id, reason=reason)
        return _Outcome(article.id, reason=reason)

    tasks = [asyncio.create_task(_process_single(article)) for article in articles]
    return await asyncio.gather(*tasks)


async def _author_cover(
    request: ExportRequest,
    client: httpx.AsyncClient,
    cfg: AppConfig,
    state: _JobState,
) -> ImageAsset | None:
    try:
        return await resolve_cover(
            CoverMode.AUTHOR,
            request.publication.author_cover_url,
            None,
            client=client,
            retries=cfg.fetch.retries,
        )
    except CoverUnavailable as exc:
        state.warnings.append(f"cover setup issue: {exc}")
        return None


async def _fetch_images(
    documents: list[NormalizedDocument],
    client: httpx.AsyncClient,
    cfg: AppConfig,
    state: _JobState,
) -> dict[str, ImageAsset]:
    refs: list[str] = []
    for doc in documents:
        for block in doc.blocks:
            if block.kind == BlockKind.IMAGE_REF and block.image_ref and block.image_ref not in refs:
                refs.append(block.image_ref)

    sem = asyncio.Semaphore(max(1, cfg.fetch.concurrency))

    async def _fetch_single(ref: str) -> tuple[str, ImageAsset | None]:
        async with sem:
            result = await fetch_url_async(client, ref, cfg.fetch.retries)
        if not result.ok:
            state.warnings.append(f"image not embedded: {ref} ({result.error})")
            return ref, None
        try:
            return ref, image_asset(result.content, result.media_type)
        except ValueError as exc:
            state.warnings.append(f"image not embedded: {ref} ({exc})")
            return ref, None

    fetched = await asyncio.gather(*(_fetch_single(ref) for ref in refs))
    return {ref: asset for ref, asset in fetched if asset is not None}


def _write_packaged(
    request: ExportRequest,
    documents: list[NormalizedDocument],
    cover: ImageAsset | None,
    images: dict[str, ImageAsset],
    output_dir: Path,
    cfg: AppConfig,
    state: _JobState,
    logger: logging.Logger,
) -> None:
    path = output_dir / f"{sanitize_filename(request.publication.title or 'publication')}.epub"
    try:
        book = render_epub(
            documents,
            request.publication,
            cover,
            request.metadata_fields,
            request.granularity,
            images=images,
            language=cfg.export.language,
        )
    except Exception as exc:  # noqa: BLE001
        _record_output_failure(path, f"{type(exc).__name__}: {exc}", state, logger)
        return

    for article_id in book.substituted:
        state.warnings.append(f"chapter replaced by placeholder: {article_id}")
    error = _write_file(path, book.content)
    if error:
        _record_output_failure(path, error, state, logger)
    else:
        _record_output(path, state, logger)


async def _write_text(
    request: ExportRequest,
    documents: list[NormalizedDocument],
    output_dir: Path,
    state: _JobState,
    logger: logging.Logger,
) -> None:
    outputs = render_text(
        documents,
        request.granularity,
        request.metadata_fields,
        publication_title=request.publication.title,
    )
    paths = [output_dir / output.name for output in outputs]
    # Each text file has its own path, so per-article writes can overlap.
    errors = await asyncio.gather(
        *(asyncio.to_thread(_write_file, path, output.content) for path, output in zip(paths, outputs))
    )
    for path, error in zip(paths, errors):
        if error:
            _record_output_failure(path, error, state, logger)
        else:
            _record_output(path, state, logger)


def _write_file(path: Path, content: bytes) -> str | None:
    try:
        path.write_bytes(content)
    except OSError as exc:
        return str(exc)
    return None


def _record_output(path: Path, state: _JobState, logger: logging.Logger) -> None:
    state.output_files.append(str(path))
    log_event(logger, "Output written", event="output_written", path=str(path))


def _record_output_failure(path: Path, error: str, state: _JobState, logger: logging.Logger) -> None:
    state.warnings.append(f"failed to write {path.name}: {error}")
    log_event(logger, "Output failed", logging.WARNING, event="output_failed", path=str(path), error=error)


def _cancelled_result(outcomes: list[_Outcome], state: _JobState, logger: logging.Logger) -> ExportResult:
    failed = [
        ExportFailure(outcome.article_id, outcome.reason or CANCELLED_REASON)
        for outcome in outcomes
    ]
    log_event(logger, "Export cancelled", logging.WARNING, event="export_cancelled", failed=len(failed))
    return ExportResult(
        succeeded_article_ids=(),
        failed=tuple(failed),
        output_files=tuple(state.output_files),
        warnings=tuple(state.warnings),
    )


def _build_result(outcomes: list[_Outcome], state: _JobState, logger: logging.Logger) -> ExportResult:
    succeeded = [outcome.article_id for outcome in outcomes if outcome.document is not None]
    failed = [
        ExportFailure(outcome.article_id, outcome.reason or "unknown error")
        for outcome in outcomes
        if outcome.document is None
    ]
    log_event(
        logger,
        "Export complete",
        event="export_complete",
        succeeded=len(succeeded),
        failed=len(failed),
        outputs=len(state.output_files),
        warnings=len(state.warnings),
    )
    return ExportResult(
        succeeded_article_ids=tuple(succeeded),
        failed=tuple(failed),
        output_files=tuple(state.output_files),
        warnings=tuple(state.warnings),
    )
