from __future__ import annotations

from typing import Iterator

import pytest

from contentclassifier.config import BedrockConfig, GeminiConfig
from contentclassifier.errors import FetchFailed, MissingCredentials, SitemapEmpty
from contentclassifier.models import ClassifiedPage, ProcessingState, QueueSnapshot, TagSet
from contentclassifier.services.queue import ProcessingQueue, format_eta

GEMINI = GeminiConfig(api_key="key")

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.org/a</loc></url>
  <url><loc>https://example.org/b</loc></url>
  <url><loc>https://example.org/c</loc></url>
</urlset>
"""


def page(url: str) -> ClassifiedPage:
    return ClassifiedPage(url=url, title=url.rsplit("/", 1)[-1].upper(), tags=TagSet(topics=["topic:memory"]))


class FakeFetcher:
    def __init__(self, failing: tuple[str, ...] = ()) -> None:
        self.failing = set(failing)
        self.fetched: list[str] = []

    def fetch(self, url: str) -> str:
        self.fetched.append(url)
        if url in self.failing:
            raise FetchFailed(url, ["AllOrigins: HTTP 500"])
        return f"content of {url}"


class FakeClassifier:
    def __init__(self, preflight_error: Exception | None = None) -> None:
        self.preflight_error = preflight_error
        self.classified: list[str] = []

    def preflight(self, config) -> None:
        if self.preflight_error is not None:
            raise self.preflight_error

    def classify(self, url: str, text: str, config) -> ClassifiedPage:
        self.classified.append(url)
        return page(url)


def ticking_clock(step: float = 10.0) -> Iterator[float]:
    value = 0.0
    while True:
        yield value
        value += step


def make_queue(urls, *, config=GEMINI, fetcher=None, classifier=None, **kwargs):
    sleeps: list[float] = []
    clock = ticking_clock()
    queue = ProcessingQueue(
        urls,
        config=config,
        fetcher=fetcher or FakeFetcher(),
        classifier=classifier or FakeClassifier(),
        sleep=sleeps.append,
        clock=lambda: next(clock),
        **kwargs,
    )
    return queue, sleeps


URLS = ["https://example.org/a", "https://example.org/b", "https://example.org/c"]


def test_run_classifies_every_url_in_order() -> None:
    fetcher = FakeFetcher()
    queue, sleeps = make_queue(URLS, fetcher=fetcher)

    snapshot = queue.run()

    assert fetcher.fetched == URLS
    assert [item.state for item in snapshot.items] == [ProcessingState.COMPLETED] * 3
    assert [result.url for result in queue.results] == URLS
    assert snapshot.progress == 100
    assert snapshot.running is False
    assert sleeps == [2.0, 2.0]


def test_bedrock_runs_use_shorter_pacing() -> None:
    queue, sleeps = make_queue(URLS, config=BedrockConfig())

    queue.run()

    assert sleeps == [0.5, 0.5]


def test_prior_results_are_skipped_and_kept_first() -> None:
    fetcher = FakeFetcher()
    prior = [page("https://example.org/b")]
    queue, sleeps = make_queue(URLS, fetcher=fetcher, prior_results=prior)

    assert queue.items[1].state is ProcessingState.COMPLETED
    assert queue.items[1].data == prior[0]

    queue.run()

    assert fetcher.fetched == ["https://example.org/a", "https://example.org/c"]
    assert [result.url for result in queue.results] == [
        "https://example.org/b",
        "https://example.org/a",
        "https://example.org/c",
    ]
    assert sleeps == [2.0]


def test_failed_item_does_not_block_the_rest() -> None:
    fetcher = FakeFetcher(failing=("https://example.org/b",))
    classifier = FakeClassifier()
    queue, _ = make_queue(URLS, fetcher=fetcher, classifier=classifier)

    snapshot = queue.run()

    assert [item.state for item in snapshot.items] == [
        ProcessingState.COMPLETED,
        ProcessingState.ERROR,
        ProcessingState.COMPLETED,
    ]
    assert snapshot.items[1].error.startswith("Failed to fetch content. Attempts: AllOrigins: HTTP 500")
    assert classifier.classified == ["https://example.org/a", "https://example.org/c"]
    assert snapshot.progress == 100
    assert [result.url for result in queue.results] == ["https://example.org/a", "https://example.org/c"]


def test_error_items_are_retried_on_the_next_run() -> None:
    fetcher = FakeFetcher(failing=("https://example.org/b",))
    queue, _ = make_queue(URLS, fetcher=fetcher)
    queue.run()

    fetcher.failing.clear()
    fetcher.fetched.clear()
    snapshot = queue.run()

    assert fetcher.fetched == ["https://example.org/b"]
    assert snapshot.count(ProcessingState.COMPLETED) == 3


def test_updates_report_states_progress_and_eta() -> None:
    updates: list[QueueSnapshot] = []
    queue, _ = make_queue(URLS, on_update=updates.append)

    queue.run()

    first_item_states = []
    for update in updates:
        state = update.items[0].state
        if not first_item_states or first_item_states[-1] is not state:
            first_item_states.append(state)
    assert first_item_states == [
        ProcessingState.SCRAPING,
        ProcessingState.CLASSIFYING,
        ProcessingState.COMPLETED,
    ]

    running_updates = [update for update in updates if update.running]
    assert all(update.progress < 100 for update in running_updates[:-1])
    etas = [update.eta_seconds for update in updates if update.eta_seconds is not None]
    assert etas[0] == 20.0
    assert 10.0 in etas
    assert etas[-1] == 0.0
    assert updates[-1].running is False
    assert updates[-1].progress == 100


def test_stop_takes_effect_after_the_current_item() -> None:
    fetcher = FakeFetcher()
    queue: ProcessingQueue

    def stop_after_first(snapshot: QueueSnapshot) -> None:
        if snapshot.items[0].state is ProcessingState.COMPLETED and snapshot.running:
            queue.stop()

    queue, sleeps = make_queue(URLS, fetcher=fetcher, on_update=stop_after_first)

    snapshot = queue.run()

    assert fetcher.fetched == ["https://example.org/a"]
    assert [item.state for item in snapshot.items] == [
        ProcessingState.COMPLETED,
        ProcessingState.PENDING,
        ProcessingState.PENDING,
    ]
    assert sleeps == []
    assert queue.is_running is False

    queue.on_update = None
    queue.run()

    assert fetcher.fetched == URLS


def test_stop_during_credential_check_prevents_any_fetch() -> None:
    fetcher = FakeFetcher()
    classifier = FakeClassifier()
    queue, sleeps = make_queue(URLS, fetcher=fetcher, classifier=classifier)
    classifier.preflight = lambda config: queue.stop()

    snapshot = queue.run()

    assert fetcher.fetched == []
    assert all(item.state is ProcessingState.PENDING for item in snapshot.items)
    assert snapshot.running is False
    assert sleeps == []

    classifier.preflight = lambda config: None
    queue.run()

    assert fetcher.fetched == URLS


def test_stop_before_run_starts_is_honoured() -> None:
    fetcher = FakeFetcher()
    queue, _ = make_queue(URLS, fetcher=fetcher)

    queue.stop()
    queue.run()

    assert fetcher.fetched == []


def test_preflight_failure_aborts_before_any_fetch() -> None:
    fetcher = FakeFetcher()
    classifier = FakeClassifier(preflight_error=MissingCredentials("Gemini API key is missing."))
    queue, _ = make_queue(URLS, fetcher=fetcher, classifier=classifier)

    with pytest.raises(MissingCredentials):
        queue.run()

    assert fetcher.fetched == []
    assert all(item.state is ProcessingState.PENDING for item in queue.items)


def test_run_with_everything_done_reports_complete() -> None:
    fetcher = FakeFetcher()
    updates: list[QueueSnapshot] = []
    queue, _ = make_queue(
        URLS,
        fetcher=fetcher,
        prior_results=[page(url) for url in URLS],
        on_update=updates.append,
    )

    snapshot = queue.run()

    assert fetcher.fetched == []
    assert snapshot.progress == 100
    assert snapshot.eta_seconds == 0.0
    assert len(updates) == 1


def test_duplicate_urls_are_processed_once() -> None:
    fetcher = FakeFetcher()
    queue, _ = make_queue(URLS + ["https://example.org/a"], fetcher=fetcher)

    queue.run()

    assert len(queue.items) == 3
    assert fetcher.fetched == URLS


def test_from_sitemap_parses_urls() -> None:
    queue = ProcessingQueue.from_sitemap(
        SITEMAP, config=GEMINI, fetcher=FakeFetcher(), classifier=FakeClassifier()
    )

    assert [item.url for item in queue.items] == URLS
    assert queue.progress == 0.0


def test_from_sitemap_without_urls_raises() -> None:
    with pytest.raises(SitemapEmpty):
        ProcessingQueue.from_sitemap("<urlset></urlset>", config=GEMINI)


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(None, "Calculating..."), (0, "0s"), (44.2, "45s"), (60, "1m 0s"), (200, "3m 20s")],
)
def test_format_eta(seconds, expected) -> None:
    assert format_eta(seconds) == expected
