# [Shared: Services]
"""
Response Parser — turns a model's free-text reply into typed records.

Models wrap JSON in markdown fences, prepend chatter, or run out of tokens
mid-object. parse_json_lenient() copes with all three; parse_response()
then validates the payload into a Pydantic model. Both raise
ResponseParseError so each layer can apply its own documented fallback.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from lab_reasoning.exceptions import ResponseParseError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

JsonValue = Union[dict, list]

# `"key":` (or a bare `"key"`) left open at the end of an object
_DANGLING_KEY = re.compile(r'(?<=[{,])\s*"(?:[^"\\]|\\.)*"\s*:?\s*$')


def parse_json_lenient(text: Optional[str]) -> JsonValue:
    """
    Extract and decode the JSON payload of a model reply.

    Tries the extracted payload as-is first, then a bracket-repaired copy.

    Raises:
        ResponseParseError: if no JSON object or array can be recovered.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty model response", raw_text=text or "")

    json_str = extract_json(text)
    last_error: Optional[Exception] = None
    for candidate in (json_str, repair_truncated_json(json_str)):
        if candidate is None:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if isinstance(data, (dict, list)):
            return data
        last_error = ValueError(f"expected object or array, got {type(data).__name__}")

    logger.debug(f"Unparseable model reply: {preview(text)}")
    raise ResponseParseError(f"Model response is not valid JSON: {last_error}", raw_text=text)


def parse_response(text: Optional[str], response_model: Type[T]) -> T:
    """Parse a model reply and validate it into ``response_model``."""
    data = parse_json_lenient(text)
    if not isinstance(data, dict):
        raise ResponseParseError(
            f"Expected a JSON object for {response_model.__name__}, got a list",
            raw_text=text or "",
        )
    try:
        return response_model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"{response_model.__name__} validation failed: {e}")
        raise ResponseParseError(
            f"Model response does not match {response_model.__name__}: "
            f"{e.error_count()} validation error(s)",
            raw_text=text or "",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def extract_json(text: str) -> str:
    """Extract JSON from a response that might include markdown code blocks."""
    # Try to find JSON in ```json ... ``` blocks
    if "```json" in text:
        start = text.index("```json") + 7
        end = text.find("```", start)
        if end == -1:
            # Unclosed code block: take everything after the opening tag
            return text[start:].strip()
        return text[start:end].strip()
    if "```" in text:
        start = text.index("```") + 3
        end = text.find("```", start)
        body = text[start:].strip() if end == -1 else text[start:end].strip()
        # Drop a language tag such as ```JSON
        first_line, _, rest = body.partition("\n")
        if rest and first_line.strip().isalpha():
            return rest.strip()
        return body
    # Raw JSON: first balanced value after any leading prose
    for i, char in enumerate(text):
        if char in "{[":
            end, _, _ = _scan_brackets(text, i)
            # Never closed: hand the tail to the repair step
            return text[i : end + 1] if end is not None else text[i:].strip()
    return text.strip()


def repair_truncated_json(text: str) -> Optional[str]:
    """
    Close a reply cut off by the token limit: the open string, a dangling
    object key, a trailing comma, then every open array and object.
    Returns None if the input is empty.
    """
    if not text or not text.strip():
        return None

    s = text.rstrip()
    end, closers, in_string = _scan_brackets(s)
    if end is not None:
        return s
    if in_string:
        s += '"'
    if closers and closers[-1] == "}":
        s = _DANGLING_KEY.sub("", s)
    s = s.rstrip().rstrip(",")
    return s + "".join(reversed(closers))


def _scan_brackets(text: str, start: int = 0) -> Tuple[Optional[int], List[str], bool]:
    """
    Walk JSON text from ``start`` tracking strings and nesting.

    Returns (index that closes the outermost value or None, closers still
    pending, whether the scan ended inside a string literal).
    """
    closers: List[str] = []
    in_string = False
    i = start
    while i < len(text):
        c = text[i]
        if in_string:
            if c == "\\":
                i += 2
                continue
            if c == '"':
                in_string = False
        elif c == '"':
            in_string = True
        elif c in "{[":
            closers.append("}" if c == "{" else "]")
        elif c in "}]" and closers:
            closers.pop()
            if not closers:
                return i, closers, False
        i += 1
    return None, closers, in_string


def preview(data: Any, limit: int = 300) -> str:
    """Short single-line rendering of a payload for log messages."""
    text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False, default=str)
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."
