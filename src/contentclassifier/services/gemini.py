"""Classification through the schema-constrained Gemini API."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from contentclassifier.config import GeminiConfig
from contentclassifier.errors import ClassificationFailed, EmptyResponse, MissingCredentials
from contentclassifier.models import ClassifiedPage
from contentclassifier.services.taxonomy import (
    SYSTEM_INSTRUCTION,
    TAXONOMY_SCHEMA,
    build_gemini_prompt,
    parse_classification,
)

__all__ = ["GeminiClassifier", "is_rate_limited"]

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
INITIAL_BACKOFF = 5.0


def is_rate_limited(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` signals a 429 / resource-exhausted condition."""

    if isinstance(exc, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return True
    if getattr(exc, "code", None) == 429:
        return True
    return "RESOURCE_EXHAUSTED" in str(exc)


def _default_model_factory(config: GeminiConfig, api_key: str) -> Any:
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(
        model_name=config.model,
        system_instruction=SYSTEM_INSTRUCTION,
        generation_config=genai.GenerationConfig(
            response_mime_type="application/json",
            response_schema=TAXONOMY_SCHEMA,
        ),
    )


def _response_text(response: Any) -> str:
    try:
        return (response.text or "").strip()
    except ValueError:
        # raised by the SDK when the candidate carries no text parts
        return ""


class GeminiClassifier:
    """Send page text to Gemini, backing off when rate limited."""

    def __init__(
        self,
        model_factory: Callable[[GeminiConfig, str], Any] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
    ) -> None:
        self._model_factory = model_factory or _default_model_factory
        self._sleep = sleep
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff

    def check_credentials(self, config: GeminiConfig) -> str:
        api_key = config.resolved_api_key()
        if not api_key:
            raise MissingCredentials("Gemini API key is missing.")
        return api_key

    def classify(self, url: str, text: str, config: GeminiConfig) -> ClassifiedPage:
        api_key = self.check_credentials(config)
        model = self._model_factory(config, api_key)
        prompt = build_gemini_prompt(url, text)

        delay = self.initial_backoff
        attempt = 0
        while True:
            try:
                response = model.generate_content(prompt)
                break
            except Exception as exc:  # noqa: BLE001 - every SDK failure surfaces as ClassificationFailed
                if is_rate_limited(exc) and attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        "Gemini rate limited for %s; retry %d/%d in %.0fs",
                        url,
                        attempt,
                        self.max_retries,
                        delay,
                    )
                    self._sleep(delay)
                    delay *= 2
                    continue
                raise ClassificationFailed(f"Gemini classification failed: {exc}") from exc

        content = _response_text(response)
        if not content:
            raise EmptyResponse("Empty response from Gemini")

        return parse_classification(url, content)
