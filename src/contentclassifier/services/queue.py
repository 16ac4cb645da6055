"""Sequential processing queue: fetch, classify, track progress and ETA."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Iterable, List, Sequence

from contentclassifier.config import BackendConfig
from contentclassifier.errors import SitemapEmpty
from contentclassifier.models import ClassifiedPage, ProcessingState, ProcessingStatus, QueueSnapshot
from contentclassifier.services.classifier import ClassificationClient
from contentclassifier.services.crawler import ContentFetcher
from contentclassifier.services.sitemap import parse_sitemap

__all__ = ["PACING_DELAYS", "ProcessingQueue", "format_eta"]

logger = logging.getLogger(__name__)

#: Seconds to wait between items; Bedrock has higher default quotas.
PACING_DELAYS = {"gemini": 2.0, "bedrock": 0.5}


def format_eta(seconds: float | None) -> str:
    """Render an ETA as ``"45s"`` or ``"3m 20s"``."""

    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "Calculating..."
    whole = math.ceil(seconds)
    if whole < 60:
        return f"{whole}s"
    minutes, remainder = divmod(whole, 60)
    return f"{minutes}m {remainder}s"


class ProcessingQueue:
    """Run every URL through :class:`ContentFetcher` and :class:`ClassificationClient`.

    Items are processed one at a time in sitemap order. URLs already present in
    ``prior_results`` start out completed and are never fetched again, so a
    partially processed sitemap can be resubmitted to resume it. ``results``
    holds the prior results followed by every page classified here.
    """

    def __init__(
        self,
        urls: Iterable[str],
        *,
        config: BackendConfig,
        prior_results: Sequence[ClassifiedPage] = (),
        fetcher: ContentFetcher | None = None,
        classifier: ClassificationClient | None = None,
        on_update: Callable[[QueueSnapshot], None] | None = None,
        pacing_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.fetcher = fetcher or ContentFetcher()
        self.classifier = classifier or ClassificationClient()
        self.on_update = on_update
        self.pacing_delay = PACING_DELAYS[config.provider] if pacing_delay is None else pacing_delay
        self._sleep = sleep
        self._clock = clock
        self._keep_running = threading.Event()
        self._stop_requested = threading.Event()

        self.results: List[ClassifiedPage] = list(prior_results)
        known = {page.url: page for page in self.results}

        self.items: List[ProcessingStatus] = []
        seen: set[str] = set()
        for url in urls:
            if url in seen:
                continue
            seen.add(url)
            existing = known.get(url)
            if existing is not None:
                self.items.append(
                    ProcessingStatus(url=url, state=ProcessingState.COMPLETED, data=existing)
                )
            else:
                self.items.append(ProcessingStatus(url=url))

        self.eta_seconds: float | None = None

    @classmethod
    def from_sitemap(cls, raw_text: str, **kwargs) -> "ProcessingQueue":
        """Build a queue from raw sitemap text, raising :class:`SitemapEmpty` if it has no URLs."""

        urls = parse_sitemap(raw_text)
        if not urls:
            raise SitemapEmpty()
        return cls(urls, **kwargs)

    @property
    def is_running(self) -> bool:
        return self._keep_running.is_set()

    @property
    def unresolved_count(self) -> int:
        return sum(1 for item in self.items if item.state is not ProcessingState.COMPLETED)

    @property
    def progress(self) -> float:
        """Percentage of items that are completed or failed."""

        if not self.items:
            return 0.0
        resolved = sum(1 for item in self.items if item.state.resolved)
        return resolved / len(self.items) * 100

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            items=[item.copy() for item in self.items],
            progress=self.progress,
            eta_seconds=self.eta_seconds,
            running=self.is_running,
        )

    def stop(self) -> None:
        """Ask the run to stop once the current item has finished.

        A request made before the first item starts, for example while
        credentials are being checked, prevents any item from starting.
        """

        self._stop_requested.set()
        self._keep_running.clear()

    def run(self) -> QueueSnapshot:
        """Process every item that is not completed yet and return the final snapshot.

        Credential problems are raised before any item starts. Failures for a
        single URL are recorded on that item and the run moves on.
        """

        try:
            self.classifier.preflight(self.config)

            if self.unresolved_count == 0:
                logger.info("All %d URLs have already been processed", len(self.items))
                self.eta_seconds = 0.0
                self._publish()
                return self.snapshot()

            if not self._stop_requested.is_set():
                self._keep_running.set()
            self._process_pending()
        finally:
            self._keep_running.clear()
            self._stop_requested.clear()

        self._publish()
        return self.snapshot()

    def _process_pending(self) -> None:
        started = self._clock()
        processed = 0
        logger.info(
            "Processing %d of %d URLs with %s",
            self.unresolved_count,
            len(self.items),
            self.config.provider,
        )

        for index, item in enumerate(self.items):
            if item.state is ProcessingState.COMPLETED:
                continue
            if self._stop_requested.is_set():
                logger.info("Run stopped with %d URLs left", self.unresolved_count)
                return

            self._process(item)
            processed += 1

            remaining = sum(
                1
                for later in self.items[index + 1:]
                if later.state is not ProcessingState.COMPLETED
            )
            elapsed = self._clock() - started
            self.eta_seconds = (elapsed / processed) * remaining
            self._publish()

            if remaining and not self._stop_requested.is_set():
                self._sleep(self.pacing_delay)


    def _process(self, item: ProcessingStatus) -> None:
        item.state = ProcessingState.SCRAPING
        item.error = None
        self._publish()

        try:
            text = self.fetcher.fetch(item.url)

            item.state = ProcessingState.CLASSIFYING
            self._publish()

            page = self.classifier.classify(item.url, text, self.config)
        except Exception as exc:  # noqa: BLE001 - failures are recorded per item
            logger.error("Error processing %s: %s", item.url, exc)
            item.state = ProcessingState.ERROR
            item.error = str(exc) or type(exc).__name__
            return

        item.state = ProcessingState.COMPLETED
        item.data = page
        if not any(existing.url == page.url for existing in self.results):
            self.results.append(page)
        logger.info("Classified %s", item.url)

    def _publish(self) -> None:
        if self.on_update is not None:
            self.on_update(self.snapshot())
