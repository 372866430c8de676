from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Iterable


@dataclass(frozen=True)
class TicketMatcher:
    """Finds ticket ids of one tracker project in MR descriptions and commit titles.

    Descriptions must link tickets with a browse URL
    (``https://jira.example.com/browse/REL-10``); commit titles may mention the
    bare id anywhere, even glued to other text (``feature_REL-10 fix``).
    Matching is case-sensitive.
    """

    project_id: str
    browse_url: str
    _url_pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)
    _title_pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.project_id:
            raise ValueError("project_id must be non-empty")
        ticket = rf"{re.escape(self.project_id)}-\d+"
        base = re.escape(self.browse_url.rstrip("/"))
        object.__setattr__(self, "_url_pattern", re.compile(rf"{base}/({ticket})"))
        object.__setattr__(self, "_title_pattern", re.compile(rf"({ticket})"))

    def extract(self, text: str | None) -> tuple[str, ...]:
        if not text:
            return ()
        return tuple(match.group(1) for match in self._url_pattern.finditer(text))

    def extract_all(self, texts: Iterable[str | None]) -> tuple[str, ...]:
        ordered: dict[str, None] = {}
        for text in texts:
            for ticket_id in self.extract(text):
                ordered.setdefault(ticket_id, None)
        return tuple(ordered)

    def first_in_title(self, title: str | None) -> str | None:
        if not title:
            return None
        match = self._title_pattern.search(title)
        if match is None:
            return None
        return match.group(1)
