"""Taxonomy prompts, the response schema and response normalisation."""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from contentclassifier.errors import InvalidResponseShape
from contentclassifier.models import ClassifiedPage

__all__ = [
    "BEDROCK_TEXT_LIMIT",
    "GEMINI_TEXT_LIMIT",
    "SYSTEM_INSTRUCTION",
    "TAXONOMY",
    "TAXONOMY_SCHEMA",
    "build_bedrock_prompt",
    "build_gemini_prompt",
    "parse_classification",
    "strip_code_fences",
]

GEMINI_TEXT_LIMIT = 20_000
BEDROCK_TEXT_LIMIT = 15_000

TAXONOMY = {
    "personas": ["patient", "caregiver", "parent", "professional", "bereaved"],
    "types": ["autoimmune", "infectious", "post_infectious"],
    "stages": ["pre_diagnosis", "acute_hospital", "early_recovery", "long_term_management"],
    "topics": ["memory", "behaviour", "legal", "school", "travel", "research"],
}

SYSTEM_INSTRUCTION = (
    "You are the AI Data Engineer for Encephalitis International. "
    "You strictly follow the provided taxonomy. "
    "Prefix tags with their category name (e.g., 'persona:caregiver', 'stage:acute_hospital'). "
    "If a category is not applicable, leave the array empty. "
    "Be precise."
)


def _string_array(description: str) -> dict:
    return {"type": "array", "items": {"type": "string"}, "description": description}


TAXONOMY_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "The extracted title of the page."},
        "summary": {"type": "string", "description": "A one sentence summary of the content."},
        "tags": {
            "type": "object",
            "properties": {
                "personas": _string_array(
                    "List of personas: patient, caregiver, parent, professional, bereaved."
                ),
                "types": _string_array(
                    "Medical types: autoimmune (NMDA, LGI1, etc.), infectious (HSV, TBE, etc.), "
                    "post_infectious."
                ),
                "stages": _string_array(
                    "Stages: pre_diagnosis, acute_hospital, early_recovery, long_term_management."
                ),
                "topics": _string_array("Topics: memory, behaviour, legal, school, travel, research."),
            },
            "required": ["personas", "types", "stages", "topics"],
        },
    },
    "required": ["title", "summary", "tags"],
}

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def build_gemini_prompt(url: str, text: str) -> str:
    return (
        f"Analyze the following website content from URL: {url}.\n\n"
        "Your task is to classify this content for Encephalitis International based on the "
        "specific taxonomy provided in the schema.\n\n"
        f"Content Preview:\n{text[:GEMINI_TEXT_LIMIT]}"
    )


def build_bedrock_prompt(url: str, text: str) -> str:
    rules = "\n".join(
        f"- {category}: [{', '.join(values)}]"
        + (" (and specific subtypes if found like NMDA, HSV)" if category == "types" else "")
        for category, values in TAXONOMY.items()
    )
    example = json.dumps(
        {
            "title": "Page Title",
            "summary": "One sentence summary",
            "tags": {category: [] for category in TAXONOMY},
        },
        indent=2,
    )
    return (
        f"{SYSTEM_INSTRUCTION}\n"
        f"Analyze the following website content from URL: {url}.\n\n"
        "Classify this content based on the following taxonomy.\n"
        "Return ONLY a valid JSON object matching the example structure. "
        "Do not output any other text or markdown formatting.\n\n"
        f"Taxonomy Rules:\n{rules}\n\n"
        f"JSON Structure:\n{example}\n\n"
        f"Content Preview:\n{text[:BEDROCK_TEXT_LIMIT]}"
    )


def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers a model may wrap around JSON."""

    return _FENCE_RE.sub("", text).strip()


def parse_classification(url: str, raw: str) -> ClassifiedPage:
    """Merge the model's JSON reply with ``url`` into a :class:`ClassifiedPage`."""

    try:
        payload: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidResponseShape(f"Model reply is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise InvalidResponseShape("Model reply is not a JSON object.")

    payload.pop("url", None)
    try:
        page = ClassifiedPage.model_validate({"url": url, **payload})
    except ValidationError as exc:
        raise InvalidResponseShape(f"Model reply does not match the classification shape: {exc}") from exc

    # exported results without a title cannot be imported again
    if not page.title.strip():
        raise InvalidResponseShape("Model reply has an empty title.")
    return page
