"""Convenience script for classifying a sitemap locally."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

# Ensure the src directory is on the Python path so the contentclassifier package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from contentclassifier.config import AppSettings, BedrockConfig, GeminiConfig  # noqa: E402
from contentclassifier.errors import ClassifierError  # noqa: E402
from contentclassifier.models import QueueSnapshot  # noqa: E402
from contentclassifier.results import read_results_file, write_results_file  # noqa: E402
from contentclassifier.services.crawler import ContentFetcher  # noqa: E402
from contentclassifier.services.queue import ProcessingQueue, format_eta  # noqa: E402

DEFAULT_OUTPUT = Path("content_database.json")


def _progress_reporter() -> Callable[[QueueSnapshot], None]:
    last_progress = -1.0

    def report(snapshot: QueueSnapshot) -> None:
        nonlocal last_progress
        if snapshot.progress == last_progress:
            return
        last_progress = snapshot.progress
        logging.info("Progress %.0f%% (%s left)", snapshot.progress, format_eta(snapshot.eta_seconds))

    return report


def main() -> None:
    """Parse the sitemap, resume from earlier results and classify the rest."""

    parser = argparse.ArgumentParser(description="Classify every page listed in a sitemap")
    parser.add_argument("sitemap", type=Path, help="Sitemap XML file (leading noise is ignored)")
    parser.add_argument("--results", type=Path, default=None, help="Previously exported results to resume from")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT, help="Where to write the results JSON")
    parser.add_argument("--provider", choices=("gemini", "bedrock"), default=None)
    parser.add_argument("--settings", type=Path, default=None, help="Settings JSON file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        settings = AppSettings.load_or_default(args.settings)
    except ValueError as exc:
        logging.error("Could not load settings: %s", exc)
        sys.exit(1)

    backend = settings.backend
    if args.provider and args.provider != backend.provider:
        backend = BedrockConfig() if args.provider == "bedrock" else GeminiConfig()

    try:
        sitemap_text = args.sitemap.read_text(encoding="utf-8")
        prior = read_results_file(args.results) if args.results else []
    except OSError as exc:
        logging.error("Could not read input: %s", exc)
        sys.exit(1)
    except ClassifierError as exc:
        logging.error("%s", exc)
        sys.exit(1)

    fetcher = ContentFetcher(
        timeout=settings.fetch_timeout,
        min_content_length=settings.min_content_length,
        max_content_length=settings.max_content_length,
    )

    try:
        queue = ProcessingQueue.from_sitemap(
            sitemap_text,
            config=backend,
            prior_results=prior,
            fetcher=fetcher,
            on_update=_progress_reporter(),
        )
    except ClassifierError as exc:
        logging.error("%s", exc)
        sys.exit(1)

    try:
        snapshot = queue.run()
    except ClassifierError as exc:
        logging.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        queue.stop()
        logging.warning("Interrupted; writing the results collected so far")
        snapshot = queue.snapshot()
    finally:
        write_results_file(args.output, queue.results)

    failed = [item for item in snapshot.items if item.error]
    for item in failed:
        logging.warning("Failed %s: %s", item.url, item.error)
    logging.info("Wrote %d results to %s (%d failed)", len(queue.results), args.output, len(failed))


if __name__ == "__main__":
    main()
