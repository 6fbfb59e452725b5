"""
Publication Export - offline bundles from hosted publications.

This package lists a hosted publication's articles and exports them as an
EPUB container and/or plain-text files, isolating per-article failures.

Main entry point is the CLI via `pub-export export` command.

Example:
    $ pub-export export example.substack.com -o out/ -f packaged -f text
"""

__all__ = [
    "__version__",
    "list_articles",
    "run_export",
    "CancelToken",
    "Publication",
    "Article",
    "ExportRequest",
    "ExportResult",
    "ExportFailure",
    "ConfigurationError",
    "CollectionError",
]
__version__ = "0.1.0"

from .collect import list_articles
from .errors import CollectionError, ConfigurationError
from .runner import CancelToken, run_export
from .types import Article, ExportFailure, ExportRequest, ExportResult, Publication
