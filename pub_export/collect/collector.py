"""
Article collector for hosted publications.

Lists a publication's articles from its RSS feed, falling back to scraping
the archive page, and fetches individual article pages when the listing
did not carry a body. Only the Publication/Article shapes leave this module.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
import json
import logging
import re
from typing import Any, Iterator
from urllib.parse import urljoin
import xml.etree.ElementTree as ET

from bs4 import BeautifulSoup
import httpx
from readability import Document
import trafilatura

from ..config import AppConfig, FetchConfig
from ..errors import ArticleFetchError, CollectionError
from ..logging_utils import get_logger, log_event
from ..types import Article, ArticleListing, Publication
from ..utils import normalize_publication_url, normalize_whitespace, parse_datetime_flexible
from .fetcher import build_client, fetch_url, fetch_url_async


_CONTENT_NS = "{http://purl.org/rss/1.0/modules/content/}"
_DC_NS = "{http://purl.org/dc/elements/1.1/}"

_BODY_SELECTORS = (
    ".available-content",
    "article .body",
    "article .markup",
    ".body.markup",
    "article",
    "main",
)

_AUTHOR_META = (
    ("name", "author"),
    ("name", "parsely-author"),
    ("property", "article:author"),
    ("property", "og:article:author"),
)

_AUTHOR_SELECTORS = (
    "[itemprop='author']",
    "a[rel='author']",
    ".pencraft .byline-name",
    ".post-meta .author",
)

_READING_TIME_RE = re.compile(r"(\d+)\s*min\s*read", re.IGNORECASE)


def list_articles(
    url: str,
    cfg: AppConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> ArticleListing:
    """List a publication and all of its articles.

    Tries the RSS feed first and falls back to the archive page. Missing
    publication author or cover image are filled in from the home page.

    Args:
        url: Publication URL, host, or bare substack name
        cfg: Application configuration (defaults if None)
        transport: Optional httpx transport, mainly for tests

    Returns:
        ArticleListing with publication info and a non-empty article list

    Raises:
        CollectionError: If the publication is unreachable or has no articles
    """
    cfg = cfg or AppConfig()
    logger = get_logger()
    base_url = normalize_publication_url(url)

    with build_client(cfg.fetch, transport) as client:
        try:
            listing = _load_from_feed(client, base_url, cfg.fetch)
            source = "feed"
        except CollectionError as feed_error:
            log_event(
                logger,
                "Feed unavailable",
                level=logging.DEBUG,
                event="feed_unavailable",
                url=base_url,
                error=str(feed_error),
            )
            listing = _load_from_archive(client, base_url, cfg.fetch)
            source = "archive"

        publication = _hydrate_publication(client, listing.publication, cfg.fetch)

    log_event(
        logger,
        "Publication listed",
        event="publication_listed",
        url=base_url,
        source=source,
        count=len(listing.articles),
    )
    return ArticleListing(publication=publication, articles=listing.articles)


async def fetch_article(client: httpx.AsyncClient, article: Article, retries: int) -> Article:
    """Fetch an article page and fill in its body and page metadata.

    Raises:
        ArticleFetchError: If the page cannot be fetched or has no body
    """
    result = await fetch_url_async(client, article.canonical_url, retries)
    if not result.ok:
        raise ArticleFetchError(result.error or "fetch failed")

    html = result.text or ""
    soup = BeautifulSoup(html, "html.parser")
    body = _extract_body_html(soup) or _extract_readability_body(html)
    if not body:
        raise ArticleFetchError("no article body found")

    tags = _meta_values(soup, "article:tag")
    return replace(
        article,
        body_markup=body,
        tags=frozenset(tags) if tags else article.tags,
        reading_time=article.reading_time or _parse_reading_time(html),
        author=article.author or _extract_author(soup, html),
        subtitle=article.subtitle or _meta_content(soup, "property", "og:description"),
        cover_image_url=article.cover_image_url or _meta_content(soup, "property", "og:image"),
    )


def _load_from_feed(client: httpx.Client, base_url: str, cfg: FetchConfig) -> ArticleListing:
    candidates = [f"{base_url}/feed", f"{base_url}/rss"]
    last_error = "Unable to load publication feed."
    for feed_url in candidates:
        result = fetch_url(client, feed_url, min(cfg.retries, 2))
        if not result.ok:
            last_error = f"Failed feed candidate {feed_url}: {result.error}"
            continue
        try:
            channel = ET.fromstring(result.content).find("channel")
        except ET.ParseError as exc:
            last_error = f"Failed to parse feed {feed_url}: {exc}"
            continue
        if channel is None:
            last_error = f"Feed {feed_url} has no channel."
            continue

        articles = _articles_from_channel(channel)
        if not articles:
            raise CollectionError("Feed loaded but no posts were found.")
        return ArticleListing(
            publication=_publication_from_channel(base_url, channel),
            articles=articles,
        )
    raise CollectionError(last_error)


def _publication_from_channel(base_url: str, channel: ET.Element) -> Publication:
    author = None
    for item in channel.iter("item"):
        author = _child_text(item, f"{_DC_NS}creator") or _child_text(item, "author")
        if author:
            break
    image = channel.find("image")
    return Publication(
        url=base_url,
        title=_child_text(channel, "title") or "Untitled publication",
        author=author,
        author_cover_url=_child_text(image, "url") if image is not None else None,
    )


def _articles_from_channel(channel: ET.Element) -> list[Article]:
    articles = []
    for item in channel.iter("item"):
        link = _child_text(item, "link")
        if not link:
            continue
        raw_date = _child_text(item, "pubDate") or ""
        parsed = parse_datetime_flexible(raw_date)
        enclosure = item.find("enclosure")
        articles.append(
            Article(
                id=_child_text(item, "guid") or link,
                title=_child_text(item, "title") or "Untitled post",
                published_at=parsed.isoformat() if parsed else raw_date,
                canonical_url=link,
                tags=frozenset(
                    text for text in (normalize_whitespace(c.text or "") for c in item.findall("category")) if text
                ),
                subtitle=_child_text(item, "description"),
                body_markup=_child_text(item, f"{_CONTENT_NS}encoded", strip=False),
                author=_child_text(item, f"{_DC_NS}creator"),
                cover_image_url=enclosure.get("url") if enclosure is not None else None,
            )
        )
    return articles


def _load_from_archive(client: httpx.Client, base_url: str, cfg: FetchConfig) -> ArticleListing:
    archive_url = f"{base_url}/archive"
    result = fetch_url(client, archive_url, min(cfg.retries, 2))
    if not result.ok:
        raise CollectionError(f"Could not reach publication at {base_url}: {result.error}")

    html = result.text or ""
    soup = BeautifulSoup(html, "html.parser")
    now = datetime.now(timezone.utc)
    seen: set[str] = set()
    articles = []
    for anchor in soup.select("a[href*='/p/']"):
        full_url = urljoin(base_url + "/", anchor.get("href", ""))
        title = normalize_whitespace(anchor.get_text(" "))
        if not title or full_url in seen:
            continue
        seen.add(full_url)
        # Archive pages list newest first; keep that order through the date sort.
        pseudo_date = now - timedelta(seconds=len(articles))
        articles.append(
            Article(
                id=full_url,
                title=title,
                published_at=pseudo_date.isoformat(),
                canonical_url=full_url,
            )
        )

    if not articles:
        raise CollectionError("Could not discover any posts from feed or archive.")

    title_tag = soup.find("title")
    return ArticleListing(
        publication=Publication(
            url=base_url,
            title=normalize_whitespace(title_tag.get_text()) if title_tag else "Untitled publication",
            author=_extract_author(soup, html),
            author_cover_url=_meta_content(soup, "property", "og:image"),
        ),
        articles=articles,
    )


def _hydrate_publication(client: httpx.Client, publication: Publication, cfg: FetchConfig) -> Publication:
    if publication.author and publication.author_cover_url:
        return publication

    result = fetch_url(client, publication.url, min(cfg.retries, 1))
    if not result.ok:
        return publication
    html = result.text or ""
    soup = BeautifulSoup(html, "html.parser")
    return replace(
        publication,
        author=publication.author or _extract_author(soup, html),
        author_cover_url=publication.author_cover_url or _meta_content(soup, "property", "og:image"),
    )


def _child_text(element: ET.Element | None, tag: str, strip: bool = True) -> str | None:
    if element is None:
        return None
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    text = child.text.strip() if strip else child.text
    return text if text.strip() else None


def _meta_content(soup: BeautifulSoup, attr: str, value: str) -> str | None:
    node = soup.find("meta", attrs={attr: value})
    if node is None:
        return None
    content = (node.get("content") or "").strip()
    return content or None


def _meta_values(soup: BeautifulSoup, prop: str) -> list[str]:
    values = []
    for node in soup.find_all("meta", attrs={"property": prop}):
        content = (node.get("content") or "").strip()
        if content:
            values.append(content)
    return values


def _extract_body_html(soup: BeautifulSoup) -> str | None:
    for selector in _BODY_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        inner = node.decode_contents()
        if inner.strip():
            return inner
    return None


def _extract_readability_body(html: str) -> str | None:
    if not html.strip():
        return None
    summary = Document(html).summary(html_partial=True)
    if not BeautifulSoup(summary, "html.parser").get_text(strip=True):
        return None
    return summary


def _extract_author(soup: BeautifulSoup, html: str) -> str | None:
    for candidate in _author_candidates(soup, html):
        if not candidate:
            continue
        cleaned = normalize_whitespace(candidate)
        if cleaned and cleaned.lower() not in {"substack", "unknown"}:
            return cleaned
    return None


def _author_candidates(soup: BeautifulSoup, html: str) -> Iterator[str | None]:
    for attr, value in _AUTHOR_META:
        yield _meta_content(soup, attr, value)
    for selector in _AUTHOR_SELECTORS:
        node = soup.select_one(selector)
        yield node.get_text(" ") if node is not None else None
    yield _author_from_json_ld(soup)
    yield _author_from_trafilatura(html)


def _author_from_json_ld(soup: BeautifulSoup) -> str | None:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        names: list[str] = []
        _collect_author_names(data, names)
        if names:
            return names[0]
    return None


def _collect_author_names(value: Any, output: list[str]) -> None:
    if isinstance(value, list):
        for item in value:
            _collect_author_names(item, output)
        return
    if not isinstance(value, dict):
        return
    author = value.get("author")
    if isinstance(author, str):
        output.append(author)
    elif isinstance(author, dict) and isinstance(author.get("name"), str):
        output.append(author["name"])
    elif isinstance(author, list):
        for item in author:
            if isinstance(item, dict) and isinstance(item.get("name"), str):
                output.append(item["name"])
            elif isinstance(item, str):
                output.append(item)
    graph = value.get("@graph")
    if graph is not None:
        _collect_author_names(graph, output)


def _author_from_trafilatura(html: str) -> str | None:
    if not html.strip():
        return None
    metadata = trafilatura.extract_metadata(html)
    if metadata is None:
        return None
    return getattr(metadata, "author", None)


def _parse_reading_time(html: str) -> int | None:
    match = _READING_TIME_RE.search(html)
    return int(match.group(1)) if match else None
