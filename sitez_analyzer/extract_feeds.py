from __future__ import annotations

import re

from .extract_metadata import feed_links
from .html_utils import ParsedPage, clean_text
from .models import Document, FeedEntry, FeedRecord

_FEED_URL_RE = re.compile(
    r"(?:/feed/?$|/feeds?/|/rss/?$|/rss/|\.rss$|/atom/?$|atom\.xml$|rss\.xml$|feed\.xml$|index\.xml$|\.atom$|feed\.json$)",
    re.IGNORECASE,
)


def _feed_type_from_url(url: str) -> str:
    lowered = url.lower()
    if "atom" in lowered:
        return "Atom"
    if lowered.endswith(".json"):
        return "JSON Feed"
    if "rss" in lowered or "feed" in lowered:
        return "RSS"
    return "XML Feed"


def extract(doc: Document) -> FeedRecord:
    """Discover feeds declared by the page; nothing is fetched."""
    page = ParsedPage(doc.html, doc.final_url)
    record = FeedRecord()

    for url, feed_type, title in feed_links(page):
        record.entries.append(FeedEntry(url=url, type=feed_type, title=title, source="link_tag"))
        record.urls.append(url)

    for a in page.soup.find_all("a", href=True):
        url = page.absolute(str(a.get("href")))
        if not url or url in record.urls:
            continue
        path = url.split("?", 1)[0]
        if not _FEED_URL_RE.search(path):
            continue
        title = clean_text(a.get_text()) or None
        record.entries.append(FeedEntry(url=url, type=_feed_type_from_url(path), title=title, source="url_pattern"))
        record.urls.append(url)

    return record
