"""Dispatch of classification requests to the configured backend."""

from __future__ import annotations

from contentclassifier.config import BackendConfig, BedrockConfig, GeminiConfig
from contentclassifier.models import ClassifiedPage
from contentclassifier.services.bedrock import BedrockClassifier
from contentclassifier.services.gemini import GeminiClassifier

__all__ = ["ClassificationClient"]


class ClassificationClient:
    """Classify page text with whichever backend ``config`` selects."""

    def __init__(
        self,
        gemini: GeminiClassifier | None = None,
        bedrock: BedrockClassifier | None = None,
    ) -> None:
        self.gemini = gemini or GeminiClassifier()
        self.bedrock = bedrock or BedrockClassifier()

    def preflight(self, config: BackendConfig) -> None:
        """Fail early when the backend credentials cannot be resolved."""

        if isinstance(config, BedrockConfig):
            self.bedrock.check_credentials(config)
        else:
            self.gemini.check_credentials(config)

    def classify(self, url: str, text: str, config: BackendConfig) -> ClassifiedPage:
        if isinstance(config, BedrockConfig):
            return self.bedrock.classify(url, text, config)
        if isinstance(config, GeminiConfig):
            return self.gemini.classify(url, text, config)
        raise TypeError(f"Unsupported backend configuration: {type(config).__name__}")
