"""
Content normalization from raw article markup to the canonical block model.

The normalizer strips presentation markup and platform widgets, keeps
paragraph / heading / list / quote structure with inline emphasis, turns
images into references for the renderers, and lifts footnotes out of the
body. Markup that cannot be parsed degrades to one stripped paragraph.
"""

from __future__ import annotations

import html
import math
import re
from typing import Iterable

from bs4 import (
    BeautifulSoup,
    Comment,
    Declaration,
    Doctype,
    NavigableString,
    ProcessingInstruction,
    Tag,
)

from .errors import MissingContentError
from .types import Article, Block, BlockKind, Footnote, MetadataField, NormalizedDocument
from .utils import normalize_whitespace


WORDS_PER_MINUTE = 225
EMPTY_BODY_TEXT = "No content available."

_REMOVE_TAGS = ["script", "style", "noscript", "iframe", "video", "audio", "form", "button", "svg"]
_WIDGET_CLASS_MARKERS = (
    "subscription-widget",
    "subscribe-widget",
    "paywall",
    "preamble",
    "button-wrapper",
    "share-dialog",
    "post-ufi",
)
_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "header", "footer", "aside", "figure",
    "figcaption", "picture", "blockquote", "ul", "ol", "li", "pre", "table", "hr",
    *_HEADINGS,
}
_INLINE_WRAPPERS = {
    "em": "em", "i": "em", "strong": "strong", "b": "strong",
    "code": "code", "sup": "sup", "sub": "sub",
}
_NON_CONTENT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)
_BACKLINK_SELECTOR = (
    "a.footnote-number, a.footnote-backref, a[href^='#fnref'], a[href^='#footnote-anchor']"
)
_FOOTNOTE_TOKEN_RE = re.compile(r"\[\[FN:(\d+)\]\]")
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")
_BR_SPACE_RE = re.compile(r"\s*<br/>\s*")


def normalize(
    article: Article,
    fallback_author: str | None = None,
    estimate_reading_time: bool = True,
) -> NormalizedDocument:
    """Convert an article's raw body markup into a NormalizedDocument.

    Pure function; performs no I/O. Image references are recorded, not
    fetched.

    Args:
        article: Article with body markup
        fallback_author: Author used when the article has no byline
        estimate_reading_time: Estimate reading time from word count when missing

    Returns:
        NormalizedDocument; `degraded` is set when markup fell back to one paragraph

    Raises:
        MissingContentError: If the article has no body markup
    """
    if article.body_markup is None:
        raise MissingContentError("article has no body markup")

    degraded = False
    try:
        blocks, footnotes = _build_blocks(article.body_markup)
    except Exception:  # noqa: BLE001
        blocks, footnotes = [], []
        degraded = True

    if not blocks:
        text = _strip_markup(article.body_markup)
        degraded = True
        blocks = [_text_block(BlockKind.PARAGRAPH, text or EMPTY_BODY_TEXT)]

    word_count = sum(len(block.text.split()) for block in blocks if block.kind != BlockKind.IMAGE_REF)
    return NormalizedDocument(
        article_id=article.id,
        title=article.title,
        metadata=_metadata(article, fallback_author, word_count, estimate_reading_time),
        blocks=blocks,
        footnotes=footnotes,
        word_count=word_count,
        degraded=degraded,
    )


def estimate_minutes(word_count: int) -> int:
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))


def _metadata(
    article: Article,
    fallback_author: str | None,
    word_count: int,
    estimate_reading_time: bool,
) -> dict[MetadataField, str]:
    reading_time = article.reading_time
    if reading_time is None and estimate_reading_time and word_count:
        reading_time = estimate_minutes(word_count)
    return {
        MetadataField.TITLE: article.title,
        MetadataField.AUTHOR: article.author or fallback_author or "Unknown",
        MetadataField.PUBLISHED_AT: article.published_at or "N/A",
        MetadataField.URL: article.canonical_url,
        MetadataField.TAGS: ", ".join(sorted(article.tags)) or "N/A",
        MetadataField.SUBTITLE: article.subtitle or "N/A",
        MetadataField.READING_TIME: f"{reading_time} min" if reading_time else "N/A",
        MetadataField.SUMMARY: article.summary or "N/A",
    }


def _build_blocks(markup: str) -> tuple[list[Block], list[Footnote]]:
    soup = BeautifulSoup(markup, "html.parser")
    for node in soup.find_all(string=lambda value: isinstance(value, _NON_CONTENT_STRINGS)):
        node.extract()
    for tag in soup.find_all(_REMOVE_TAGS) + soup.find_all(_is_widget):
        if not tag.decomposed:
            tag.decompose()

    footnotes = _extract_footnotes(soup)
    builder = _BlockBuilder(len(footnotes))
    builder.process(soup)
    builder.flush()
    return builder.blocks, footnotes


def _is_widget(tag: Tag) -> bool:
    if tag.attrs is None:
        return False
    classes = " ".join(tag.get("class") or [])
    return any(marker in classes for marker in _WIDGET_CLASS_MARKERS)


def _extract_footnotes(soup: BeautifulSoup) -> list[Footnote]:
    """Lift footnote containers out of the body and tokenize references.

    Recognizes `div.footnote` containers and list items of a `.footnotes`
    section. References pointing at a recognized footnote are replaced by
    `[[FN:n]]` tokens, numbered in container order.
    """
    containers: list[tuple[set[str], Tag]] = []
    for div in soup.select("div.footnote"):
        ids = {node["id"] for node in div.find_all(id=True)}
        if div.get("id"):
            ids.add(div["id"])
        containers.append((ids, div))
    for item in soup.select(".footnotes li[id], section[role=doc-endnotes] li[id]"):
        containers.append(({item["id"]}, item))

    footnotes: list[Footnote] = []
    numbers: dict[str, int] = {}
    for ids, node in containers:
        content = node.select_one(".footnote-content") or node
        for backlink in content.select(_BACKLINK_SELECTOR):
            backlink.decompose()
        text = normalize_whitespace(content.get_text(" ")).rstrip("↩").strip()
        if not text:
            continue
        number = len(footnotes) + 1
        footnotes.append(Footnote(number=number, text=text))
        for footnote_id in ids:
            numbers[footnote_id] = number

    for _ids, node in containers:
        if not node.decomposed:
            node.decompose()
    if footnotes:
        for section in soup.select(".footnotes, section[role=doc-endnotes]"):
            if not section.decomposed:
                section.decompose()

    for anchor in soup.find_all("a", href=True):
        target = anchor["href"].rsplit("#", 1)[-1] if "#" in anchor["href"] else None
        if target is None or target not in numbers:
            continue
        replaced = anchor.parent if _is_lone_child(anchor, "sup") else anchor
        replaced.replace_with(NavigableString(f"[[FN:{numbers[target]}]]"))
    return footnotes


def _is_lone_child(tag: Tag, parent_name: str) -> bool:
    parent = tag.parent
    if parent is None or parent.name != parent_name:
        return False
    return parent.get_text(strip=True) == tag.get_text(strip=True)


class _BlockBuilder:
    """Walks parsed markup and accumulates block nodes in document order."""

    def __init__(self, footnote_count: int):
        self.blocks: list[Block] = []
        self._run: list = []
        self._footnote_count = footnote_count
        self._referenced: set[int] = set()
        self._kind = BlockKind.PARAGRAPH

    def process(self, container: Tag) -> None:
        for child in list(container.children):
            if isinstance(child, NavigableString):
                self._run.append(child)
                continue
            if not isinstance(child, Tag):
                continue
            name = child.name
            if name == "img":
                self.flush()
                self._image(child)
            elif name in _HEADINGS:
                self.flush()
                self._heading(child)
            elif name in ("ul", "ol"):
                self.flush()
                self._list(child, depth=0)
            elif name == "blockquote":
                self.flush()
                self._quote(child)
            elif name == "pre":
                self.flush()
                self._pre(child)
            elif name == "table":
                self.flush()
                self._table(child)
            elif name == "hr":
                self.flush()
            elif name in _BLOCK_TAGS or child.find(list(_BLOCK_TAGS) + ["img"]) is not None:
                self.flush()
                self.process(child)
                self.flush()
            else:
                self._run.append(child)

    def flush(self) -> None:
        if not self._run:
            return
        nodes, self._run = self._run, []
        text, inline = self._render(nodes)
        if text:
            self.blocks.append(Block(kind=self._kind, text=text, inline=inline))

    def _heading(self, tag: Tag) -> None:
        text, inline = self._render(tag.contents)
        if text:
            self.blocks.append(
                Block(kind=BlockKind.HEADING, text=text, inline=inline, level=_HEADINGS[tag.name])
            )
        for img in tag.find_all("img"):
            self._image(img)

    def _list(self, tag: Tag, depth: int) -> None:
        ordered = tag.name == "ol"
        for item in tag.find_all("li", recursive=False):
            nested = item.find_all(["ul", "ol"], recursive=False)
            nested_ids = {id(sub) for sub in nested}
            own = [child for child in item.contents if id(child) not in nested_ids]
            text, inline = self._render(own)
            if text:
                self.blocks.append(
                    Block(kind=BlockKind.LIST_ITEM, text=text, inline=inline, level=depth, ordered=ordered)
                )
            for img in item.find_all("img"):
                # Images in nested lists belong to the nested items.
                if img.find_parent(["ul", "ol"]) is tag:
                    self._image(img)
            for sub in nested:
                self._list(sub, depth + 1)

    def _quote(self, tag: Tag) -> None:
        # Text runs inside the quote become quote blocks; nested lists,
        # headings and images keep their own kinds.
        outer, self._kind = self._kind, BlockKind.QUOTE
        try:
            self.process(tag)
            self.flush()
        finally:
            self._kind = outer

    def _pre(self, tag: Tag) -> None:
        text = tag.get_text().strip("\n")
        if text.strip():
            inline = "<br/>".join(html.escape(line, quote=False) for line in text.split("\n"))
            self.blocks.append(Block(kind=BlockKind.PARAGRAPH, text=text, inline=f"<code>{inline}</code>"))

    def _table(self, tag: Tag) -> None:
        for row in tag.find_all("tr"):
            cells = [normalize_whitespace(cell.get_text(" ")) for cell in row.find_all(["td", "th"])]
            text = " | ".join(cell for cell in cells if cell)
            if text:
                self.blocks.append(
                    Block(kind=BlockKind.PARAGRAPH, text=text, inline=html.escape(text, quote=False))
                )

    def _image(self, tag: Tag) -> None:
        src = (tag.get("src") or tag.get("data-src") or "").strip()
        if not src or src.startswith("data:"):
            return
        alt = normalize_whitespace(tag.get("alt") or "")
        self.blocks.append(Block(kind=BlockKind.IMAGE_REF, text=alt, image_ref=src))

    def _render(self, nodes: Iterable) -> tuple[str, str]:
        text_parts: list[str] = []
        markup_parts: list[str] = []
        for node in nodes:
            _render_node(node, text_parts, markup_parts)

        lines = [normalize_whitespace(line) for line in "".join(text_parts).split("\n")]
        text = "\n".join(line for line in lines if line)
        markup = _SPACE_RE.sub(" ", "".join(markup_parts)).strip()
        markup = _BR_SPACE_RE.sub("<br/>", markup)
        while markup.startswith("<br/>"):
            markup = markup[len("<br/>"):]
        while markup.endswith("<br/>"):
            markup = markup[: -len("<br/>")]

        text = _FOOTNOTE_TOKEN_RE.sub(r"[\1]", text)
        markup = _FOOTNOTE_TOKEN_RE.sub(self._footnote_link, markup)
        return text, markup

    def _footnote_link(self, match: re.Match) -> str:
        number = int(match.group(1))
        if number > self._footnote_count:
            return f"[{number}]"
        anchor_id = ""
        if number not in self._referenced:
            self._referenced.add(number)
            anchor_id = f' id="footnote-ref-{number}"'
        return f'<a class="footnote-ref" href="#footnote-{number}"{anchor_id}><sup>{number}</sup></a>'


def _render_node(node, text_parts: list[str], markup_parts: list[str]) -> None:
    if isinstance(node, Comment):
        return
    if isinstance(node, NavigableString):
        value = str(node)
        text_parts.append(value)
        markup_parts.append(html.escape(value, quote=False))
        return
    if not isinstance(node, Tag):
        return

    name = node.name
    if name == "br":
        text_parts.append("\n")
        markup_parts.append("<br/>")
        return
    if name in ("img", "ul", "ol"):
        return

    wrapper = _INLINE_WRAPPERS.get(name)
    href = node.get("href", "") if name == "a" else ""
    if wrapper:
        markup_parts.append(f"<{wrapper}>")
    elif href.startswith(("http://", "https://", "mailto:")):
        markup_parts.append(f'<a href="{html.escape(href, quote=True)}">')

    for child in node.children:
        _render_node(child, text_parts, markup_parts)

    if wrapper:
        markup_parts.append(f"</{wrapper}>")
    elif href.startswith(("http://", "https://", "mailto:")):
        markup_parts.append("</a>")
    if name in _BLOCK_TAGS:
        text_parts.append(" ")
        markup_parts.append(" ")


def _text_block(kind: BlockKind, text: str) -> Block:
    return Block(kind=kind, text=text, inline=html.escape(text, quote=False))


def _strip_markup(markup: str) -> str:
    return normalize_whitespace(html.unescape(_TAG_RE.sub(" ", markup)))
