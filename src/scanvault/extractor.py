"""Extract and strictly decode a JSON object embedded in model output.

Model responses often wrap their JSON in prose or markdown fences. The
extractor locates the first balanced top-level object and decodes it against
a pydantic model with strict validation.
"""

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import InvalidJSONError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class DecodedResponse(Generic[T]):
    """A decoded value together with the exact JSON text it came from."""

    value: T
    raw_json: str


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` object found in text.

    Braces inside JSON string literals are ignored, and a backslash inside a
    string escapes the following character.

    Args:
        text: Free-form text, possibly containing a JSON object

    Returns:
        Substring starting at the first ``{`` and ending at its matching ``}``

    Raises:
        InvalidJSONError: If there is no ``{`` or the braces never balance
    """
    start = text.find("{")
    if start < 0:
        raise InvalidJSONError("No JSON object found in response")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    raise InvalidJSONError("Unbalanced braces in response JSON")


def decode_response(model_cls: type[T], text: str) -> DecodedResponse[T]:
    """Decode the first JSON object in text as an instance of model_cls.

    Args:
        model_cls: Pydantic model describing the expected schema
        text: Raw model response text

    Returns:
        DecodedResponse with the validated model and the consumed JSON text

    Raises:
        InvalidJSONError: If no object is found, the JSON is malformed, or it
            does not match the schema
    """
    raw_json = extract_json_object(text)
    try:
        value = model_cls.model_validate_json(raw_json, strict=True)
    except ValidationError as e:
        logger.debug("Rejected %s payload: %s", model_cls.__name__, e)
        raise InvalidJSONError(
            f"Response does not match {model_cls.__name__}: {e.error_count()} error(s)"
        ) from e
    return DecodedResponse(value=value, raw_json=raw_json)
