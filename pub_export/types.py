"""
Core data types for the export pipeline.

This module defines the data structures shared by every pipeline stage:
- Publication / Article: output contract of the article collector
- Block / Footnote / NormalizedDocument: canonical document model
- ExportRequest: declarative description of one export job
- ExportResult: aggregate outcome of one export job
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ExportMode(str, Enum):
    ENTIRE_PROFILE = "entire_profile"
    SPECIFIC_POSTS = "specific_posts"


class OrderMode(str, Enum):
    DATE = "date"
    MANUAL = "manual"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ExportFormat(str, Enum):
    PACKAGED = "packaged"
    TEXT = "text"


class Granularity(str, Enum):
    PER_ARTICLE = "per_article"
    COMBINED = "combined"


class CoverMode(str, Enum):
    AUTHOR = "author"
    CUSTOM = "custom"


class MetadataField(str, Enum):
    """Recognized metadata keys, declared in rendering order."""

    TITLE = "title"
    AUTHOR = "author"
    PUBLISHED_AT = "published_at"
    URL = "url"
    TAGS = "tags"
    SUBTITLE = "subtitle"
    READING_TIME = "reading_time"
    SUMMARY = "summary"


class BlockKind(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    LIST_ITEM = "list_item"
    QUOTE = "quote"
    IMAGE_REF = "image_ref"


@dataclass(frozen=True)
class Publication:
    """A remotely hosted collection of articles.

    Attributes:
        url: Normalized base URL of the publication
        title: Publication title
        author: Optional author name
        author_cover_url: Optional URL of the author/publication image
    """
    url: str
    title: str
    author: str | None = None
    author_cover_url: str | None = None


@dataclass(frozen=True)
class Article:
    """A published article as produced by the collector.

    Attributes:
        id: Unique, stable identifier (feed guid or canonical URL)
        title: Article headline
        published_at: ISO 8601 timestamp; may be unparseable
        canonical_url: URL of the article page
        tags: Set of tag names
        subtitle: Optional subtitle / feed description
        reading_time: Optional reading time in minutes
        summary: Optional summary text
        body_markup: Raw body HTML, or None if only discovered and not fetched
        author: Optional per-article byline
        cover_image_url: Optional social image of the article
    """
    id: str
    title: str
    published_at: str
    canonical_url: str
    tags: frozenset[str] = frozenset()
    subtitle: str | None = None
    reading_time: int | None = None
    summary: str | None = None
    body_markup: str | None = None
    author: str | None = None
    cover_image_url: str | None = None


@dataclass(frozen=True)
class Block:
    """One block node of a normalized document.

    `text` is plain text for text renderers; `inline` is an escaped XHTML
    fragment that keeps inline emphasis for markup renderers.
    """
    kind: BlockKind
    text: str = ""
    inline: str = ""
    level: int = 0
    ordered: bool = False
    image_ref: str | None = None


@dataclass(frozen=True)
class Footnote:
    number: int
    text: str


@dataclass
class NormalizedDocument:
    """Canonical semantic document derived from one article.

    Attributes:
        article_id: Id of the source article
        title: Article title
        metadata: Selectable metadata rendered as display strings, keyed by field
        blocks: Ordered block nodes
        footnotes: Ordered footnotes referenced from the blocks
        word_count: Number of words across all text blocks
        degraded: True if markup fell back to a single stripped paragraph
    """
    article_id: str
    title: str
    metadata: dict[MetadataField, str] = field(default_factory=dict)
    blocks: list[Block] = field(default_factory=list)
    footnotes: list[Footnote] = field(default_factory=list)
    word_count: int = 0
    degraded: bool = False

    def metadata_block(self, fields) -> list[tuple[str, str]]:
        """Return (label, value) pairs for the selected fields in fixed order."""
        selected = set(fields)
        return [
            (METADATA_LABELS[key], self.metadata.get(key, "N/A"))
            for key in MetadataField
            if key in selected
        ]


METADATA_LABELS: dict[MetadataField, str] = {
    MetadataField.TITLE: "Title",
    MetadataField.AUTHOR: "Author",
    MetadataField.PUBLISHED_AT: "Published",
    MetadataField.URL: "URL",
    MetadataField.TAGS: "Tags",
    MetadataField.SUBTITLE: "Subtitle",
    MetadataField.READING_TIME: "Reading time",
    MetadataField.SUMMARY: "Summary",
}


@dataclass(frozen=True)
class ArticleListing:
    """Result of listing a publication's articles."""
    publication: Publication
    articles: list[Article]


@dataclass
class ExportRequest:
    """Declarative description of one export job.

    `custom_cover` accepts raw image bytes or a base64 `data:` URL.
    `manual_order` is only meaningful for `specific_posts` with manual order
    and must be a permutation of `selected_article_ids`.
    """
    publication: Publication
    articles: list[Article]
    output_directory: str | None
    mode: ExportMode = ExportMode.ENTIRE_PROFILE
    selected_article_ids: set[str] = field(default_factory=set)
    order_mode: OrderMode = OrderMode.DATE
    manual_order: list[str] = field(default_factory=list)
    sort_direction: SortDirection = SortDirection.DESC
    formats: set[ExportFormat] = field(default_factory=lambda: {ExportFormat.PACKAGED})
    granularity: Granularity = Granularity.COMBINED
    cover_mode: CoverMode = CoverMode.AUTHOR
    custom_cover: bytes | str | None = None
    metadata_fields: set[MetadataField] = field(default_factory=set)


@dataclass(frozen=True)
class ExportFailure:
    article_id: str
    reason: str


@dataclass(frozen=True)
class ExportResult:
    """Aggregate outcome of an export job.

    `succeeded_article_ids` and the ids in `failed` partition the resolved
    export sequence.
    """
    succeeded_article_ids: tuple[str, ...] = ()
    failed: tuple[ExportFailure, ...] = ()
    output_files: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
