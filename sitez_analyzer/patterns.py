"""Ordered extraction patterns.

Each field (email, phone, address, ...) owns a list of ``ExtractionPattern``
objects. Patterns run in ascending ``priority``; a normalized value is
credited to the first pattern that produced it and later duplicates are
dropped. Pattern tables are module-level constants built at import time and
never mutated.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, NamedTuple

from .html_utils import ParsedPage
from .logging_utils import get_logger

log = get_logger("patterns")

# explicit markup > structured data > free-text heuristic
PRIORITY_MARKUP = 10
PRIORITY_STRUCTURED = 20
PRIORITY_TEXT = 30

Matcher = Callable[[ParsedPage], Iterable[str]]


def _keep(value: str) -> str | None:
    value = (value or "").strip()
    return value or None


@dataclass(frozen=True)
class ExtractionPattern:
    category: str
    name: str
    priority: int
    matcher: Matcher
    post_process: Callable[[str], str | None] = _keep
    key: Callable[[str], str] = field(default=str.lower)


class Match(NamedTuple):
    value: str
    source: str


def regex_matcher(regex: re.Pattern, group: int | str = 0, on: str = "text") -> Matcher:
    """Scan the page's visible text (``on="text"``) or raw markup (``on="html"``)."""

    def _match(page: ParsedPage) -> Iterable[str]:
        haystack = page.text if on == "text" else page.html
        for m in regex.finditer(haystack):
            yield m.group(group) or ""

    return _match


def run_patterns(patterns: Iterable[ExtractionPattern], page: ParsedPage, limit: int | None = None) -> list[Match]:
    seen: set[str] = set()
    out: list[Match] = []
    for pattern in sorted(patterns, key=lambda p: p.priority):
        try:
            candidates = list(pattern.matcher(page))
        except Exception as e:
            log.warning("pattern %s/%s failed: %s", pattern.category, pattern.name, e)
            continue
        for raw in candidates:
            value = pattern.post_process(raw)
            if not value:
                continue
            k = pattern.key(value)
            if k in seen:
                continue
            seen.add(k)
            out.append(Match(value, pattern.name))
            if limit is not None and len(out) >= limit:
                return out
    return out


def first_match(patterns: Iterable[ExtractionPattern], page: ParsedPage) -> Match | None:
    found = run_patterns(patterns, page, limit=1)
    return found[0] if found else None
