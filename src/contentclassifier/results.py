"""Import and export of classified-page collections as JSON arrays."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List

from pydantic import ValidationError

from contentclassifier.errors import InvalidResultsFile
from contentclassifier.models import ClassifiedPage

__all__ = [
    "export_results",
    "load_results",
    "read_results_file",
    "validate_results",
    "write_results_file",
]


def validate_results(payload: Any) -> List[ClassifiedPage]:
    """Validate a decoded results collection.

    Every element must be an object with non-empty ``url``, ``title`` and
    ``tags``; a single bad element rejects the whole collection.
    """

    if not isinstance(payload, list):
        raise InvalidResultsFile("Invalid results format. Expected a JSON array.")

    for position, item in enumerate(payload):
        if not isinstance(item, dict) or not all(item.get(key) for key in ("url", "title", "tags")):
            raise InvalidResultsFile(
                f"Invalid results format at index {position}. "
                "Every record needs a url, a title and tags."
            )

    try:
        return [ClassifiedPage.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise InvalidResultsFile(f"Invalid results format: {exc}") from exc


def load_results(text: str) -> List[ClassifiedPage]:
    """Parse a JSON document into classified pages."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidResultsFile(f"Failed to parse results JSON: {exc}") from exc
    return validate_results(payload)


def export_results(pages: Iterable[ClassifiedPage]) -> str:
    """Serialise ``pages`` as a pretty-printed JSON array."""

    return json.dumps([page.model_dump() for page in pages], ensure_ascii=False, indent=2)


def read_results_file(path: Path | str) -> List[ClassifiedPage]:
    return load_results(Path(path).read_text(encoding="utf-8"))


def write_results_file(path: Path | str, pages: Iterable[ClassifiedPage]) -> None:
    results_path = Path(path)
    results_path.parent.mkdir(parents=True, exist_ok=True)
    results_path.write_text(export_results(pages), encoding="utf-8")
