from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from ..types import Block, BlockKind, Granularity, MetadataField, NormalizedDocument
from ..utils import sanitize_filename


ARTICLE_SEPARATOR = "=" * 60
TITLE_RULE = "-" * 60


@dataclass(frozen=True)
class TextOutput:
    """One plain-text file: name relative to the output directory, and bytes."""
    name: str
    content: bytes


def render_text(
    documents: list[NormalizedDocument],
    granularity: Granularity,
    metadata_fields: Iterable[MetadataField],
    publication_title: str = "",
    generated_at: datetime | None = None,
) -> list[TextOutput]:
    """Render documents to UTF-8 text, one file per article or one combined file.

    Per-article names carry a zero-padded position prefix so a lexical
    directory listing follows the export order.
    """
    fields = list(metadata_fields)
    if granularity == Granularity.PER_ARTICLE:
        width = max(2, len(str(len(documents))))
        return [
            TextOutput(
                name=f"{index:0{width}d} - {sanitize_filename(doc.title)}.txt",
                content=render_document_text(doc, fields).encode("utf-8"),
            )
            for index, doc in enumerate(documents, start=1)
        ]

    generated_at = generated_at or datetime.now(timezone.utc)
    parts = [
        f"Publication: {publication_title}",
        f"Generated: {generated_at.isoformat()}",
        "",
    ]
    for doc in documents:
        parts.append(ARTICLE_SEPARATOR)
        parts.append(render_document_text(doc, fields))
    stem = sanitize_filename(publication_title) if publication_title else "articles"
    return [TextOutput(name=f"{stem} - combined.txt", content="\n".join(parts).encode("utf-8"))]


def render_document_text(doc: NormalizedDocument, fields: Iterable[MetadataField]) -> str:
    lines = [doc.title, TITLE_RULE]
    # The title line above already carries the title.
    metadata = doc.metadata_block(key for key in fields if key != MetadataField.TITLE)
    lines += [f"{label}: {value}" for label, value in metadata]
    lines.append("")
    lines.append("\n\n".join(_paragraphs(doc.blocks)))
    if doc.footnotes:
        lines.append("")
        lines.append("Footnotes")
        lines += [f"[{note.number}] {note.text}" for note in doc.footnotes]
    return "\n".join(lines).rstrip() + "\n"


def _paragraphs(blocks: list[Block]) -> list[str]:
    paragraphs: list[str] = []
    list_lines: list[str] = []
    counters: dict[int, int] = {}

    for block in blocks:
        if block.kind == BlockKind.LIST_ITEM:
            # Numbering restarts whenever a shallower item closes a nested list.
            for level in [level for level in counters if level > block.level]:
                del counters[level]
            counters[block.level] = counters.get(block.level, 0) + 1
            marker = f"{counters[block.level]}." if block.ordered else "-"
            list_lines.append(f"{'  ' * block.level}{marker} {block.text}")
            continue

        if list_lines:
            paragraphs.append("\n".join(list_lines))
            list_lines, counters = [], {}

        if block.kind == BlockKind.QUOTE:
            paragraphs.append("\n".join(f"> {line}" for line in block.text.split("\n")))
        elif block.kind == BlockKind.IMAGE_REF:
            paragraphs.append(f"[Image: {block.text}]" if block.text else "[Image]")
        else:
            paragraphs.append(block.text)

    if list_lines:
        paragraphs.append("\n".join(list_lines))
    return paragraphs
