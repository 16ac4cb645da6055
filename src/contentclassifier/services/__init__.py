"""Service layer entry points for the content classifier."""

from __future__ import annotations

from .classifier import ClassificationClient  # noqa: F401
from .crawler import ContentFetcher  # noqa: F401
from .credentials import CredentialResolver  # noqa: F401
from .queue import ProcessingQueue, format_eta  # noqa: F401
from .sitemap import parse_sitemap  # noqa: F401

__all__ = [
    "ClassificationClient",
    "ContentFetcher",
    "CredentialResolver",
    "ProcessingQueue",
    "format_eta",
    "parse_sitemap",
]
