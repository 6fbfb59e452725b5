"""
Packaged-document renderer producing EPUB 3 containers.

The book is assembled with ebooklib: navigation documents and the shared
stylesheet come first, then the title page and one chapter per document in
the given order, then the cover image and embedded article images. ebooklib
writes the stored `mimetype` marker, the container descriptor and the
package document ahead of those items.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import html
import io
import re
from pathlib import Path
from typing import Iterable
import uuid

from ebooklib import epub
from jinja2 import Environment, FileSystemLoader, select_autoescape
from lxml import etree

from ..cover import ImageAsset
from ..types import Block, BlockKind, Granularity, MetadataField, NormalizedDocument, Publication


PLACEHOLDER_TEXT = "Sorry, this article could not be rendered in this format."
STYLESHEET_NAME = "style/default.css"

_XML_INVALID_RE = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["xhtml"]),
    keep_trailing_newline=True,
)


@dataclass
class PackagedBook:
    """Rendered container bytes plus the articles replaced by placeholders."""
    content: bytes
    substituted: list[str] = field(default_factory=list)


def render_epub(
    documents: list[NormalizedDocument],
    publication: Publication,
    cover: ImageAsset | None,
    metadata_fields: Iterable[MetadataField],
    granularity: Granularity = Granularity.COMBINED,
    *,
    images: dict[str, ImageAsset] | None = None,
    language: str = "en",
    modified: datetime | None = None,
    identifier: str | None = None,
) -> PackagedBook:
    """Render all documents into one EPUB container.

    Granularity does not affect packaged output: every document becomes a
    chapter of a single container. Chapters that fail to render as
    well-formed XHTML are replaced by a placeholder chapter.

    Args:
        documents: Normalized documents in resolved export order
        publication: Publication providing book title and author
        cover: Cover image, or None for a text-only title page
        metadata_fields: Fields rendered into each chapter header
        granularity: Accepted for interface symmetry; ignored
        images: Embedded images keyed by image reference
        language: Declared book language
        modified: Modification timestamp (defaults to now)
        identifier: Book UUID (defaults to a random one)

    Returns:
        PackagedBook with the container bytes and substituted article ids
    """
    del granularity
    images = images or {}
    fields = list(metadata_fields)
    book_title = _xml_safe(publication.title or "Untitled publication")
    book_author = _xml_safe(publication.author or "Unknown author")
    modified = modified or datetime.now(timezone.utc)

    book = epub.EpubBook()
    book.set_identifier(identifier or str(uuid.uuid4()))
    book.set_title(book_title)
    book.set_language(language)
    book.add_author(book_author)
    if publication.url:
        book.add_metadata("DC", "source", publication.url)

    book.add_item(epub.EpubNav(title=book_title))
    book.add_item(epub.EpubNcx())
    style = epub.EpubItem(
        uid="style-default",
        file_name=STYLESHEET_NAME,
        media_type="text/css",
        content=_env.get_template("style.css").render().encode("utf-8"),
    )
    book.add_item(style)

    cover_name = f"images/cover.{cover.extension}" if cover else None
    title_page = epub.EpubHtml(
        uid="title-page",
        title="Cover" if cover else "Title Page",
        file_name="text/title.xhtml",
        lang=language,
    )
    title_page.content = _env.get_template("title.xhtml").render(
        title=book_title,
        author=book_author,
        cover_href=f"../{cover_name}" if cover_name else None,
    )
    title_page.add_link(href=f"../{STYLESHEET_NAME}", rel="stylesheet", type="text/css")
    book.add_item(title_page)

    image_hrefs = _assign_image_hrefs(documents, images)
    chapters: list[epub.EpubHtml] = []
    substituted: list[str] = []
    for index, doc in enumerate(documents, start=1):
        try:
            body = _render_chapter(doc, fields, image_hrefs)
        except (etree.XMLSyntaxError, ValueError):
            body = _render_placeholder(doc)
            substituted.append(doc.article_id)
        name = f"chapter-{index:03d}"
        chapter = epub.EpubHtml(uid=name, title=_xml_safe(doc.title), file_name=f"text/{name}.xhtml", lang=language)
        chapter.content = body
        chapter.add_link(href=f"../{STYLESHEET_NAME}", rel="stylesheet", type="text/css")
        book.add_item(chapter)
        chapters.append(chapter)

    if cover:
        # The title page shows the cover, so ebooklib's own cover page is skipped.
        book.set_cover(cover_name, cover.data, create_page=False)
        book.get_item_with_id("cover-img").media_type = cover.media_type
    for ref, href in image_hrefs.items():
        asset = images[ref]
        file_name = href.removeprefix("../")
        book.add_item(
            epub.EpubImage(uid=Path(file_name).stem, file_name=file_name, media_type=asset.media_type, content=asset.data)
        )

    book.toc = tuple(chapters)
    book.spine = [title_page, *chapters]

    buffer = io.BytesIO()
    epub.write_epub(
        buffer,
        book,
        {"mtime": modified.astimezone(timezone.utc), "raise_exceptions": True},
    )
    return PackagedBook(content=buffer.getvalue(), substituted=substituted)


def _render_chapter(
    doc: NormalizedDocument,
    fields: list[MetadataField],
    image_hrefs: dict[str, str],
) -> str:
    # The chapter heading already carries the title.
    metadata = doc.metadata_block(key for key in fields if key != MetadataField.TITLE)
    body = _env.get_template("chapter.xhtml").render(
        title=doc.title,
        metadata=metadata,
        nodes=blocks_to_xhtml(doc.blocks, image_hrefs),
        footnotes=doc.footnotes,
    )
    # Reject chapters that a reading system would refuse to parse.
    etree.fromstring(f"<div>{body}</div>".encode("utf-8"))
    return body


def _render_placeholder(doc: NormalizedDocument) -> str:
    return _env.get_template("chapter.xhtml").render(
        title=_xml_safe(doc.title),
        metadata=[],
        nodes=[f"<p>{html.escape(PLACEHOLDER_TEXT, quote=False)}</p>"],
        footnotes=[],
    )


def blocks_to_xhtml(blocks: list[Block], image_hrefs: dict[str, str] | None = None) -> list[str]:
    """Translate blocks into XHTML fragments, grouping lists and quotes."""
    image_hrefs = image_hrefs or {}
    nodes: list[str] = []
    index = 0
    while index < len(blocks):
        block = blocks[index]
        if block.kind == BlockKind.LIST_ITEM:
            end = _run_end(blocks, index, BlockKind.LIST_ITEM)
            nodes.append(_list_markup(blocks[index:end]))
            index = end
            continue
        if block.kind == BlockKind.QUOTE:
            end = _run_end(blocks, index, BlockKind.QUOTE)
            inner = "".join(f"<p>{item.inline}</p>" for item in blocks[index:end])
            nodes.append(f"<blockquote>{inner}</blockquote>")
            index = end
            continue
        if block.kind == BlockKind.HEADING:
            level = min(6, max(2, block.level + 1))
            nodes.append(f"<h{level}>{block.inline}</h{level}>")
        elif block.kind == BlockKind.IMAGE_REF:
            nodes.append(_image_markup(block, image_hrefs))
        else:
            nodes.append(f"<p>{block.inline}</p>")
        index += 1
    return nodes


def _run_end(blocks: list[Block], start: int, kind: BlockKind) -> int:
    end = start
    while end < len(blocks) and blocks[end].kind == kind:
        end += 1
    return end


def _list_markup(items: list[Block]) -> str:
    out: list[str] = []
    stack: list[tuple[str, int]] = []
    for item in items:
        tag = "ol" if item.ordered else "ul"
        while stack and stack[-1][1] > item.level:
            out.append(f"</li></{stack.pop()[0]}>")
        if stack and stack[-1][1] == item.level and stack[-1][0] != tag:
            out.append(f"</li></{stack.pop()[0]}>")
        if stack and stack[-1][1] == item.level:
            out.append("</li>")
        else:
            out.append(f"<{tag}>")
            stack.append((tag, item.level))
        out.append(f"<li>{item.inline}")
    while stack:
        out.append(f"</li></{stack.pop()[0]}>")
    return "".join(out)


def _image_markup(block: Block, image_hrefs: dict[str, str]) -> str:
    alt = html.escape(block.text, quote=True)
    href = image_hrefs.get(block.image_ref or "")
    if href is None:
        label = html.escape(block.text or "image", quote=False)
        return f'<p class="image-ref">[Image: {label}]</p>'
    caption = f"<figcaption>{html.escape(block.text, quote=False)}</figcaption>" if block.text else ""
    return f'<figure><img src="{href}" alt="{alt}"/>{caption}</figure>'


def _assign_image_hrefs(documents: list[NormalizedDocument], images: dict[str, ImageAsset]) -> dict[str, str]:
    hrefs: dict[str, str] = {}
    for doc in documents:
        for block in doc.blocks:
            ref = block.image_ref
            if block.kind != BlockKind.IMAGE_REF or ref not in images or ref in hrefs:
                continue
            hrefs[ref] = f"../images/img-{len(hrefs) + 1:03d}.{images[ref].extension}"
    return hrefs


def _xml_safe(value: str) -> str:
    return _XML_INVALID_RE.sub("", value)
