"""Exception hierarchy raised by the classification pipeline."""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "BackendAuthenticationError",
    "ClassificationFailed",
    "ClassifierError",
    "CredentialError",
    "EmptyResponse",
    "FetchFailed",
    "InvalidCredentialFormat",
    "InvalidResponseShape",
    "InvalidResultsFile",
    "KeyExchangeFailed",
    "KeyExchangeInvalid",
    "MissingCredentials",
    "ModelConfigurationError",
    "ParseFailed",
    "SitemapEmpty",
]


class ClassifierError(Exception):
    """Base class for every error raised by :mod:`contentclassifier`."""


class SitemapEmpty(ClassifierError):
    """The sitemap contained no ``<loc>`` entries, so there is nothing to process."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "No valid <loc> URLs found. Remove any header text pasted from a browser "
            "view and make sure <loc> tags are present."
        )


class FetchFailed(ClassifierError):
    """Every retrieval strategy failed for a URL."""

    def __init__(self, url: str, attempts: Sequence[str]) -> None:
        self.url = url
        self.attempts = list(attempts)
        super().__init__(f"Failed to fetch content. Attempts: {' | '.join(self.attempts)}")


class ParseFailed(ClassifierError):
    """Markup was retrieved but could not be turned into text."""


class CredentialError(ClassifierError):
    """Base class for Bedrock credential resolution failures."""


class MissingCredentials(CredentialError):
    """Required credential fields are empty."""


class InvalidCredentialFormat(CredentialError):
    """A literal API key string matched none of the supported layouts."""


class KeyExchangeInvalid(CredentialError):
    """An exchange key could not be decoded or returned unusable credentials."""


class KeyExchangeFailed(CredentialError):
    """Every strategy for reaching the credential exchange endpoint failed."""

    def __init__(self, attempts: Sequence[str]) -> None:
        self.attempts = list(attempts)
        super().__init__(
            "Key exchange failed. Unable to fetch credentials via any strategy. "
            f"Attempts: {' | '.join(self.attempts)}"
        )


class ClassificationFailed(ClassifierError):
    """The classification backend call failed after any applicable retries."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.hint = hint
        super().__init__(f"{message}. {hint}" if hint else message)


class ModelConfigurationError(ClassificationFailed):
    """The selected model cannot be invoked with the current throughput settings."""


class BackendAuthenticationError(ClassificationFailed):
    """The backend rejected the credentials or the region."""


class EmptyResponse(ClassifierError):
    """The backend replied without any content."""


class InvalidResponseShape(ClassifierError):
    """The backend replied with content that is not a classification object."""


class InvalidResultsFile(ClassifierError):
    """An imported results collection failed validation."""
