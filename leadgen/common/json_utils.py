"""
Parse-and-validate boundary for JSON produced by the LLM and the provider.

LLM output is treated as untrusted: markdown fences are stripped, the
outermost object is extracted, json.loads is tried first and json-repair
second. Anything still unusable, or anything that does not satisfy the
target pydantic model, raises ValidationError. Partial objects are never
accepted.
"""

import json
import re
from typing import Any, Dict, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from leadgen.common.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_llm_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of raw LLM output.

    Raises:
        ValidationError: If the text is empty or holds no usable JSON object

    Example:
        >>> parse_llm_json('```json\\n{"reponse": "Oui"}\\n```')
        {'reponse': 'Oui'}
    """
    if not text or not text.strip():
        raise ValidationError("Empty LLM response: no JSON content to parse")

    candidate = _extract_object(_FENCE.sub("", text.strip()))

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        parsed = repair_json(candidate, return_objects=True)

    # LLM sometimes wraps the answer in brackets: [{...}]
    if isinstance(parsed, list) and len(parsed) == 1:
        parsed = parsed[0]

    if not isinstance(parsed, dict) or not parsed:
        raise ValidationError(
            f"LLM response is not a JSON object (first 200 chars): {text[:200]}"
        )
    return parsed


def _extract_object(text: str) -> str:
    if text.startswith("{"):
        return text
    match = _OBJECT.search(text)
    if match:
        return match.group(0)
    raise ValidationError(f"No JSON object found in text: {text[:200]}")


def validate_payload(payload: Any, model: Type[ModelT], source: str = "payload") -> ModelT:
    """
    Validate a decoded payload against a pydantic model.

    Raises:
        ValidationError: With the pydantic error summary when validation fails
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"{source}: expected a JSON object, got {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except SchemaError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "<root>"
            for err in e.errors()
        )
        raise ValidationError(f"{source}: invalid fields: {fields}") from e
