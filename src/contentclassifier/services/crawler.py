"""Page retrieval through an ordered list of proxy strategies, plus text cleaning."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Sequence
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from contentclassifier.errors import FetchFailed, ParseFailed

__all__ = [
    "ContentFetcher",
    "DEFAULT_STRATEGIES",
    "RetrievalStrategy",
    "clean_page_text",
]

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10.0
MIN_CONTENT_LENGTH = 50
MAX_CONTENT_LENGTH = 30_000
CHUNK_SIZE = 8192

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

CLUTTER_SELECTORS = (
    "script",
    "style",
    "nav",
    "footer",
    "aside",
    "header",
    '[role="navigation"]',
    '[role="banner"]',
    '[role="contentinfo"]',
    "iframe",
    "noscript",
    "svg",
    "button",
    "form",
)

_WHITESPACE_RE = re.compile(r"\s+")


def _encode(url: str) -> str:
    return quote(url, safe="")


def _text_body(body: str) -> str:
    return body


def _allorigins_contents(body: str) -> str:
    return json.loads(body).get("contents") or ""


@dataclass(frozen=True)
class RetrievalStrategy:
    """One way of reaching a page, usually a third-party content proxy."""

    name: str
    build_url: Callable[[str], str]
    unwrap: Callable[[str], str] = _text_body


DEFAULT_STRATEGIES: tuple[RetrievalStrategy, ...] = (
    RetrievalStrategy(
        name="AllOrigins",
        build_url=lambda url: f"https://api.allorigins.win/get?url={_encode(url)}",
        unwrap=_allorigins_contents,
    ),
    RetrievalStrategy(
        name="CodeTabs",
        build_url=lambda url: f"https://api.codetabs.com/v1/proxy?quest={_encode(url)}",
    ),
    RetrievalStrategy(
        name="ThingProxy",
        build_url=lambda url: f"https://thingproxy.freeboard.io/fetch/{url}",
    ),
    RetrievalStrategy(
        name="CorsProxy",
        build_url=lambda url: f"https://corsproxy.io/?{_encode(url)}",
    ),
)


def clean_page_text(html: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Strip non-content markup from ``html`` and return normalised, bounded text."""

    try:
        soup = BeautifulSoup(html, "lxml")
        for element in soup.select(", ".join(CLUTTER_SELECTORS)):
            element.decompose()

        root = soup.body or soup
        text = root.get_text(" ")
    except Exception as exc:  # noqa: BLE001 - any parser failure is reported as ParseFailed
        raise ParseFailed(f"Parsing content failed: {exc}") from exc

    return _WHITESPACE_RE.sub(" ", text).strip()[:max_length]


class ContentFetcher:
    """Retrieve a page through each strategy in order and return its cleaned text.

    Every attempt, body transfer included, is bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        strategies: Sequence[RetrievalStrategy] | None = None,
        *,
        timeout: float = FETCH_TIMEOUT,
        min_content_length: int = MIN_CONTENT_LENGTH,
        max_content_length: int = MAX_CONTENT_LENGTH,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers.update(DEFAULT_HEADERS)
        self.strategies: List[RetrievalStrategy] = list(
            DEFAULT_STRATEGIES if strategies is None else strategies
        )
        self.timeout = timeout
        self.min_content_length = min_content_length
        self.max_content_length = max_content_length
        self._clock = clock

    def fetch(self, url: str) -> str:
        """Return the cleaned text of ``url``.

        Raises :class:`FetchFailed` once every strategy has failed and
        :class:`ParseFailed` when the retrieved markup cannot be interpreted.
        """

        html = self.fetch_raw(url)
        return clean_page_text(html, self.max_content_length)

    def fetch_raw(self, url: str) -> str:
        """Return raw markup from the first strategy that yields enough content."""

        attempts: List[str] = []

        for strategy in self.strategies:
            try:
                content = self._attempt(strategy, url)
            except requests.Timeout:
                attempts.append(f"{strategy.name}: Timeout")
                continue
            except Exception as exc:  # noqa: BLE001 - a failed strategy falls through to the next
                attempts.append(f"{strategy.name}: {exc}")
                continue

            if not content or len(content) <= self.min_content_length:
                attempts.append(f"{strategy.name}: Returned empty or too short content")
                continue

            logger.debug("Fetched %s via %s", url, strategy.name)
            return content

        logger.warning("All retrieval strategies failed for %s: %s", url, attempts)
        raise FetchFailed(url, attempts)

    def _attempt(self, strategy: RetrievalStrategy, url: str) -> str:
        deadline = self._clock() + self.timeout
        response = self._session.get(strategy.build_url(url), timeout=self.timeout, stream=True)
        try:
            if not 200 <= response.status_code < 300:
                raise requests.HTTPError(f"HTTP {response.status_code}", response=response)
            return strategy.unwrap(self._read_body(response, deadline))
        finally:
            response.close()

    def _read_body(self, response: requests.Response, deadline: float) -> str:
        chunks: List[bytes] = []
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if self._clock() > deadline:
                raise requests.Timeout(f"Transfer took longer than {self.timeout:g}s")
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
