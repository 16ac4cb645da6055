"""Configuration models and helpers for the content classifier."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, ValidationError

__all__ = [
    "AppSettings",
    "BackendConfig",
    "BedrockConfig",
    "DEFAULT_BEDROCK_MODEL_ID",
    "DEFAULT_BEDROCK_REGION",
    "DEFAULT_GEMINI_MODEL",
    "DEFAULT_SETTINGS_PATH",
    "GeminiConfig",
]

DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parents[2] / "data" / "settings.json"

DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"
DEFAULT_BEDROCK_REGION = "us-west-2"
DEFAULT_BEDROCK_MODEL_ID = "global.anthropic.claude-haiku-4-5-20251001-v1:0"

GEMINI_API_KEY_VARIABLES = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


class GeminiConfig(BaseModel):
    """Settings for the schema-constrained Gemini backend."""

    provider: Literal["gemini"] = "gemini"
    api_key: str | None = Field(
        default=None,
        description=(
            "Gemini API key. When omitted the GEMINI_API_KEY, GOOGLE_API_KEY or API_KEY "
            "environment variable is used."
        ),
    )
    model: str = Field(default=DEFAULT_GEMINI_MODEL, description="Gemini model name")

    def resolved_api_key(self) -> str:
        """Return the configured API key, falling back to the environment."""

        if self.api_key and self.api_key.strip():
            return self.api_key.strip()
        for variable in GEMINI_API_KEY_VARIABLES:
            value = os.environ.get(variable, "").strip()
            if value:
                return value
        return ""


class BedrockConfig(BaseModel):
    """Settings for the prompt-based AWS Bedrock backend."""

    provider: Literal["bedrock"] = "bedrock"
    auth_mode: Literal["standard", "apikey"] = Field(
        default="standard",
        description="'standard' uses the IAM key fields, 'apikey' parses or exchanges ``api_key``",
    )
    region: str = Field(default=DEFAULT_BEDROCK_REGION)
    model_id: str = Field(default=DEFAULT_BEDROCK_MODEL_ID)
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""
    api_key: str = ""

    @property
    def resolved_region(self) -> str:
        return self.region.strip() or DEFAULT_BEDROCK_REGION

    @property
    def resolved_model_id(self) -> str:
        return self.model_id.strip() or DEFAULT_BEDROCK_MODEL_ID


BackendConfig = Annotated[Union[GeminiConfig, BedrockConfig], Field(discriminator="provider")]


class AppSettings(BaseModel):
    """Runtime settings for a classification run."""

    backend: BackendConfig = Field(default_factory=GeminiConfig)
    fetch_timeout: float = Field(default=10.0, gt=0, description="Seconds per retrieval attempt")
    min_content_length: int = Field(
        default=50,
        ge=0,
        description="Retrieved markup must be longer than this to count as a success",
    )
    max_content_length: int = Field(
        default=30_000, gt=0, description="Cleaned text is truncated to this many characters"
    )

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "AppSettings":
        """Load settings from a JSON file."""

        settings_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        try:
            data = json.loads(settings_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Settings file not found: {settings_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in settings file: {settings_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Settings file is invalid: {settings_path}\n{exc}") from exc

    @classmethod
    def load_or_default(cls, path: Path | str | None = None) -> "AppSettings":
        """Return settings from disk, or the defaults when no file exists."""

        try:
            return cls.from_file(path)
        except FileNotFoundError:
            return cls()

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the settings back to disk as JSON."""

        settings_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        settings_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
