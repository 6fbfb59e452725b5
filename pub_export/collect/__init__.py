"""
Article collection stage.

This package contains the HTTP fetcher and the article collector that
produces Publication/Article records from a hosted publication.
"""

from .collector import fetch_article, list_articles
from .fetcher import FetchResult, build_async_client, build_client, fetch_url, fetch_url_async

__all__ = [
    "list_articles",
    "fetch_article",
    "FetchResult",
    "build_client",
    "build_async_client",
    "fetch_url",
    "fetch_url_async",
]
