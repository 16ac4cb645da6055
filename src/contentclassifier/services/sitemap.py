"""Sitemap parsing with a pattern-based fallback for malformed input."""

from __future__ import annotations

import logging
import re
from typing import List

from bs4 import BeautifulSoup

__all__ = ["parse_sitemap"]

logger = logging.getLogger(__name__)

XML_DECLARATION = "<?xml"
_LOC_PATTERN = re.compile(r"<loc>(.*?)</loc>")


def _strip_preamble(raw_text: str) -> str:
    """Drop anything before the XML declaration, e.g. browser header noise."""

    start = raw_text.find(XML_DECLARATION)
    return raw_text[start:] if start >= 0 else raw_text


def _extract_structured(xml: str) -> List[str]:
    soup = BeautifulSoup(xml, "xml")
    urls: List[str] = []
    for loc in soup.find_all("loc"):
        text = loc.get_text(strip=True)
        if text:
            urls.append(text)
    return urls


def _extract_with_pattern(raw_text: str) -> List[str]:
    return [match.strip() for match in _LOC_PATTERN.findall(raw_text) if match.strip()]


def parse_sitemap(raw_text: str) -> List[str]:
    """Return every ``<loc>`` URL in ``raw_text`` in document order.

    Duplicates are kept. An empty list means there is nothing to process; it is
    not an error.
    """

    if not raw_text or not raw_text.strip():
        return []

    urls = _extract_structured(_strip_preamble(raw_text))
    if urls:
        return urls

    urls = _extract_with_pattern(raw_text)
    if urls:
        logger.warning(
            "Structured sitemap parsing found no <loc> entries; pattern fallback found %d",
            len(urls),
        )
    return urls
