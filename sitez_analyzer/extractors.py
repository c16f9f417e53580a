from __future__ import annotations

from typing import Callable

from . import extract_contact, extract_feeds, extract_metadata, extract_social
from .errors import ExtractionFailure
from .logging_utils import get_logger
from .models import Document, ExtractionOutcome

log = get_logger("extract")

EXTRACTORS: dict[str, Callable[[Document], object]] = {
    "metadata": extract_metadata.extract,
    "social": extract_social.extract,
    "contact": extract_contact.extract,
    "feeds": extract_feeds.extract,
}


def _extract(category: str, doc: Document) -> object:
    fn = EXTRACTORS.get(category)
    if fn is None:
        raise ExtractionFailure(category, f"No extractor for {category}")
    try:
        return fn(doc)
    except ExtractionFailure:
        raise
    except Exception as e:
        raise ExtractionFailure(category, f"{type(e).__name__}: {e}") from e


def run_extractor(category: str, doc: Document) -> ExtractionOutcome:
    """Run one extractor; any failure is returned, never raised."""
    try:
        record = _extract(category, doc)
    except ExtractionFailure as e:
        log.warning("extractor %s failed for %s: %s", category, doc.final_url, e.message)
        return ExtractionOutcome(category=category, error=e.message, failure=e.to_dict())
    return ExtractionOutcome(category=category, record=record)
