"""Exceptions that propagate out of the pipeline's boundary operations."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised during pre-flight validation; the job never starts."""


class CollectionError(ValueError):
    """Raised when a publication cannot be listed."""


class MissingContentError(ValueError):
    """Raised when an article has no body markup to normalize."""


class ArticleFetchError(RuntimeError):
    """Raised when an article page cannot be fetched or has no body."""
