"""
Model output parsing.

Provider text may arrive wrapped in markdown fences or surrounded by prose.
The first balanced ``{...}`` object that decodes to a JSON object wins.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Tuple

from pydantic import ValidationError

from aperioesca.domain.analysis.models import AnalysisResult, FoodCheck
from aperioesca.domain.shared.errors import ResponseParseError


def _balanced_objects(text: str) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) spans of balanced brace groups, outermost first.

    Braces inside JSON string literals (and escaped quotes inside them)
    do not count towards nesting.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end != -1:
            yield start, end + 1
        start = text.find("{", start + 1)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Return the first balanced JSON object embedded in ``text``.

    Args:
        text: Raw model output

    Returns:
        Decoded object

    Raises:
        ResponseParseError: If no decodable object is present
    """
    if not text or "{" not in text:
        raise ResponseParseError("NO_JSON_OBJECT", raw_text=text)

    last_exc: Exception | None = None
    for start, end in _balanced_objects(text):
        snippet = text[start:end]
        try:
            obj = json.loads(snippet)
        except json.JSONDecodeError as exc:
            last_exc = exc
            continue
        if isinstance(obj, dict):
            return obj

    err = ResponseParseError("UNBALANCED_OR_UNDECODABLE_JSON", raw_text=text)
    if last_exc is not None:
        raise err from last_exc
    raise err


def parse_food_check(text: str) -> FoodCheck:
    """Parse a tier-1 answer."""
    data = extract_json_object(text)
    try:
        return FoodCheck.model_validate(data)
    except ValidationError as exc:
        raise ResponseParseError("FOOD_CHECK_SCHEMA_MISMATCH", raw_text=text) from exc


def parse_analysis_result(text: str) -> AnalysisResult:
    """Parse a tier-2 answer into a validated AnalysisResult."""
    data = extract_json_object(text)
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as exc:
        raise ResponseParseError("ANALYSIS_SCHEMA_MISMATCH", raw_text=text) from exc
