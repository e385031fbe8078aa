"""
Parsing and structural validation of model responses.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from llmstxt_pipeline.errors import (
    LlmInvalidDescriptionError,
    LlmInvalidSummaryFieldError,
    LlmJsonValidationError,
    LlmResponseCountMismatchError,
)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n```")


def parse_json_response(raw: str, attempt: int = 1) -> Any:
    """
    Parse a model response as JSON.

    Models sometimes wrap JSON in a markdown code fence; if the raw text is
    not JSON, the first fenced block is tried instead.
    """
    text = (raw or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        match = _FENCED_JSON_RE.search(text)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                pass
        raise LlmJsonValidationError(f"Response is not valid JSON: {e.msg}", invalid_response=text, attempt=attempt)


def validate_count(parsed: Any, expected: int, attempt: int = 1) -> None:
    if not isinstance(parsed, list):
        raise LlmJsonValidationError("Response is not a JSON array", invalid_response=str(parsed), attempt=attempt)
    if len(parsed) != expected:
        raise LlmResponseCountMismatchError(expected, len(parsed), attempt=attempt)


def validate_summary_fields(parsed: Any, attempt: int = 1) -> None:
    for index, item in enumerate(parsed):
        summary = item.get("summary") if isinstance(item, dict) else None
        if not isinstance(summary, str) or not summary.strip():
            raise LlmInvalidSummaryFieldError(index, attempt=attempt)


def validate_description_field(parsed: Any, attempt: int = 1) -> None:
    description = parsed.get("description") if isinstance(parsed, dict) else None
    if not isinstance(description, str) or not description.strip():
        raise LlmInvalidDescriptionError(attempt=attempt)


@dataclass(frozen=True)
class ValidationSpec:
    """Shape a response must have before it is accepted."""

    expected_count: Optional[int] = None
    require_summary: bool = False
    require_description: bool = False

    def validate(self, parsed: Any, attempt: int = 1) -> None:
        if self.expected_count is not None:
            validate_count(parsed, self.expected_count, attempt)
        if self.require_summary:
            if not isinstance(parsed, list):
                raise LlmJsonValidationError(
                    "Response is not a JSON array", invalid_response=str(parsed), attempt=attempt
                )
            validate_summary_fields(parsed, attempt)
        if self.require_description:
            validate_description_field(parsed, attempt)
