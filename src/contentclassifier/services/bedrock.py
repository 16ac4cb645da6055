"""Classification through the prompt-based AWS Bedrock model invocation API."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from contentclassifier.config import BedrockConfig
from contentclassifier.errors import (
    BackendAuthenticationError,
    ClassificationFailed,
    EmptyResponse,
    InvalidResponseShape,
    ModelConfigurationError,
)
from contentclassifier.models import ClassifiedPage
from contentclassifier.services.credentials import Credential, CredentialResolver
from contentclassifier.services.taxonomy import (
    build_bedrock_prompt,
    parse_classification,
    strip_code_fences,
)

__all__ = ["BedrockClassifier", "translate_client_error"]

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
MAX_TOKENS = 4096

AUTH_ERROR_CODES = {
    "UnrecognizedClientException",
    "AccessDeniedException",
    "ExpiredTokenException",
    "InvalidSignatureException",
}


def translate_client_error(exc: ClientError, region: str) -> ClassificationFailed:
    """Map a Bedrock ``ClientError`` onto the matching :class:`ClassificationFailed` variant."""

    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message") or str(exc)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code == "ValidationException" and "on-demand throughput" in message:
        return ModelConfigurationError(
            f"Model ID error: {message}",
            hint="Select a 'us.' or 'global.' prefixed model in the settings.",
        )
    if code in AUTH_ERROR_CODES or status == 403 or "403" in message:
        return BackendAuthenticationError(
            f"Authentication failed ({code or status})",
            hint=f"Check your region ({region}), key validity and whether the session token has expired.",
        )
    return ClassificationFailed(f"Bedrock classification failed ({code}): {message}")


class BedrockClassifier:
    """Send page text to an Anthropic model hosted on Bedrock."""

    def __init__(
        self,
        resolver: CredentialResolver | None = None,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.resolver = resolver or CredentialResolver()
        self._client_factory = client_factory or boto3.client

    def check_credentials(self, config: BedrockConfig) -> Credential:
        return self.resolver.resolve(config)

    def classify(self, url: str, text: str, config: BedrockConfig) -> ClassifiedPage:
        credential = self.resolver.resolve(config)
        reply = self.invoke(build_bedrock_prompt(url, text), config, credential)
        if not reply or not reply.strip():
            raise EmptyResponse("Empty response from Bedrock model")
        return parse_classification(url, strip_code_fences(reply))

    def invoke(self, prompt: str, config: BedrockConfig, credential: Credential) -> str:
        """Invoke the configured model with ``prompt`` and return the reply text."""

        region = config.resolved_region
        client = self._client_factory(
            "bedrock-runtime",
            region_name=region,
            aws_access_key_id=credential.access_key_id,
            aws_secret_access_key=credential.secret_access_key,
            aws_session_token=credential.session_token,
        )
        payload = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            response = client.invoke_model(
                modelId=config.resolved_model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(payload),
            )
        except ClientError as exc:
            logger.warning("Bedrock invocation failed: %s", exc)
            raise translate_client_error(exc, region) from exc
        except BotoCoreError as exc:
            raise ClassificationFailed(f"Bedrock classification failed: {exc}") from exc

        try:
            body = json.loads(response["body"].read())
            return body["content"][0]["text"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise InvalidResponseShape(f"Unexpected Bedrock response body: {exc}") from exc
