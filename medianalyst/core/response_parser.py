"""
Response normalization for MediAnalyst.

Turns raw model replies into typed records. Replies are expected to be
a JSON object, possibly wrapped in Markdown code fences. Anything that
cannot be decoded surfaces as a ParseFailure; nothing is replaced with
defaults behind the caller's back.
"""

import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from medianalyst.core.errors import ImageGenerationFailure, ParseFailure
from medianalyst.models.schemas import ProductSource
from medianalyst.utils.logger import get_logger

logger = get_logger("response_parser")

ModelT = TypeVar("ModelT", bound=BaseModel)

# Only the outer fence; fences inside JSON string values are left alone
_FENCE_PATTERN = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def strip_code_fences(text: Optional[str]) -> str:
    """Remove the ```json / ``` markers wrapping a reply."""
    if not text:
        return ""
    return _FENCE_PATTERN.sub("", text).strip()


def parse_json_object(text: Optional[str]) -> Dict[str, Any]:
    """
    Decode a model reply into a JSON object.

    Args:
        text: Raw reply text

    Returns:
        The decoded dictionary

    Raises:
        ParseFailure: If the reply is empty, not JSON, or not an object
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ParseFailure("Model returned an empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("Malformed JSON from model", error=str(e), preview=cleaned[:200])
        raise ParseFailure(f"Model response is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise ParseFailure(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    return data


def parse_model(text: Optional[str], model_cls: Type[ModelT], **defaults: Any) -> ModelT:
    """
    Decode a reply and validate it into a pydantic model.

    Args:
        text: Raw reply text
        model_cls: Target model class
        **defaults: Values for keys the reply left out

    Returns:
        Validated model instance
    """
    data = parse_json_object(text)
    for key, value in defaults.items():
        if data.get(key) in (None, ""):
            data[key] = value

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        logger.warning(
            "Model response failed validation",
            model=model_cls.__name__,
            fields=missing
        )
        raise ParseFailure(
            f"Model response does not match {model_cls.__name__}: {', '.join(missing)}"
        ) from e


def extract_grounding_sources(response: Any) -> List[ProductSource]:
    """
    Collect web citations from a grounded response.

    Chunks without a web entry or without a URI are skipped.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []

    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    sources = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None) if web else None
        if uri:
            sources.append(ProductSource(title=getattr(web, "title", None) or uri, uri=uri))
    return sources


def extract_inline_image(response: Any) -> bytes:
    """
    Return the bytes of the first inline image in a response.

    Raises:
        ImageGenerationFailure: If no part carries image data
    """
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return inline.data
    raise ImageGenerationFailure("No image data found in response")
