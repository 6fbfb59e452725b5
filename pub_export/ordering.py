"""
Ordering resolution: selection mode, sort direction and manual order to
one linear sequence of article ids.
"""

from __future__ import annotations

from typing import Iterable

from .errors import ConfigurationError
from .types import Article, ExportMode, ExportRequest, OrderMode, SortDirection
from .utils import timestamp_or_oldest


def resolve_order(articles: Iterable[Article], request: ExportRequest) -> list[str]:
    """Resolve the export sequence for a request.

    - entire_profile: every article, sorted by date
    - specific_posts + date: the selected articles, sorted by date
    - specific_posts + manual: the manual order verbatim

    Ids that reference no article are dropped; see `unknown_article_ids`.
    """
    by_id = {article.id: article for article in articles}

    if request.mode == ExportMode.ENTIRE_PROFILE:
        return [article.id for article in sort_by_date(by_id.values(), request.sort_direction)]

    if request.order_mode == OrderMode.MANUAL:
        return [article_id for article_id in request.manual_order if article_id in by_id]

    selected = [by_id[article_id] for article_id in request.selected_article_ids if article_id in by_id]
    return [article.id for article in sort_by_date(selected, request.sort_direction)]


def sort_by_date(articles: Iterable[Article], direction: SortDirection) -> list[Article]:
    """Sort by publish time; ties keep ascending title order in both directions.

    Unparseable timestamps sort as the oldest possible time.
    """
    by_title = sorted(articles, key=lambda article: (article.title, article.id))
    # list.sort is stable under reverse=True, so tie groups stay title-ascending.
    return sorted(
        by_title,
        key=lambda article: timestamp_or_oldest(article.published_at),
        reverse=direction == SortDirection.DESC,
    )


def unknown_article_ids(articles: Iterable[Article], request: ExportRequest) -> list[str]:
    """Return requested ids that reference no article, in a stable order."""
    if request.mode == ExportMode.ENTIRE_PROFILE:
        return []
    known = {article.id for article in articles}
    return sorted(article_id for article_id in request.selected_article_ids if article_id not in known)


def validate_selection(request: ExportRequest) -> None:
    """Check the selection invariants of a request.

    Raises:
        ConfigurationError: If a specific-posts selection is empty, or a
            manual order is not a permutation of the selection
    """
    if request.mode != ExportMode.SPECIFIC_POSTS:
        return
    if not request.selected_article_ids:
        raise ConfigurationError("No specific posts selected.")
    if request.order_mode != OrderMode.MANUAL:
        return

    manual = list(request.manual_order)
    if len(set(manual)) != len(manual):
        raise ConfigurationError("Manual order contains duplicate article ids.")
    if set(manual) != set(request.selected_article_ids):
        raise ConfigurationError("Manual order must list exactly the selected articles.")
