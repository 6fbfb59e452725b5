"""
Output renderers.

This package contains the packaged (EPUB) renderer and the plain-text
renderer. Both consume NormalizedDocuments in resolved export order and
return bytes; writing files is left to the orchestrator.
"""

from .epub import PackagedBook, blocks_to_xhtml, render_epub
from .text import TextOutput, render_document_text, render_text

__all__ = [
    "render_epub",
    "PackagedBook",
    "blocks_to_xhtml",
    "render_text",
    "render_document_text",
    "TextOutput",
]
