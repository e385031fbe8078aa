"""
Failure aggregation and llms.txt formatting.
"""

import re
from dataclasses import dataclass
from typing import List, Sequence

from llmstxt_pipeline.errors import CriticalFailureError
from llmstxt_pipeline.models import UrlSummary

CRITICAL_FAILURE_THRESHOLD = 0.8


@dataclass
class FailureReport:
    valid: List[UrlSummary]
    invalid: List[UrlSummary]

    @classmethod
    def from_summaries(cls, summaries: Sequence[UrlSummary]) -> "FailureReport":
        valid = [s for s in summaries if s.is_valid]
        invalid = [s for s in summaries if not s.is_valid]
        return cls(valid=valid, invalid=invalid)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)

    @property
    def failure_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return len(self.invalid) / self.total

    @property
    def is_critical(self) -> bool:
        return self.total > 0 and self.failure_rate >= CRITICAL_FAILURE_THRESHOLD

    def distinct_errors(self) -> List[str]:
        return list(dict.fromkeys(s.error or "Empty summary" for s in self.invalid))

    def error_message(self) -> str:
        return (
            f"Critical failure: {len(self.invalid)}/{self.total} pages failed to generate. "
            f"Errors: {', '.join(self.distinct_errors())}"
        )

    def raise_if_critical(self) -> None:
        if self.is_critical:
            raise CriticalFailureError(self.error_message())


def site_name(hostname: str) -> str:
    """``https://www.example.com/`` -> ``example.com``"""
    name = re.sub(r"^https?://", "", hostname.strip(), flags=re.IGNORECASE)
    name = re.sub(r"^www\.", "", name, flags=re.IGNORECASE)
    return name.rstrip("/")


def _one_line(text: str) -> str:
    return " ".join(text.split())


def format_llms_txt(hostname: str, description: str, entries: Sequence[UrlSummary]) -> str:
    """
    Render the llms.txt document.

    Only valid entries are written; invalid ones are skipped silently.
    """
    lines = [f"# {site_name(hostname)}", "", f"> {_one_line(description)}", "", "## Pages", ""]
    for entry in entries:
        if not entry.is_valid:
            continue
        title = _one_line(entry.title) or entry.url
        lines.append(f"- [{title}]({entry.url}): {_one_line(entry.summary)}")
    return "\n".join(lines) + "\n"
