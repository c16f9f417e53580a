from __future__ import annotations

import re

from bs4.element import Tag

from .html_utils import ParsedPage, clean_text, jsonld_types
from .models import Document, MetadataRecord

FEED_MIME_TYPES: dict[str, str] = {
    "application/rss+xml": "RSS",
    "application/atom+xml": "Atom",
    "application/feed+json": "JSON Feed",
    "application/json+feed": "JSON Feed",
    "text/xml": "XML Feed",
    "application/xml": "XML Feed",
}


def _rel(tag: Tag) -> list[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [r.lower() for r in rel]


def _title(page: ParsedPage) -> str:
    tag = page.soup.find("title")
    if isinstance(tag, Tag):
        return clean_text(tag.get_text())
    return ""


def _prefixed_meta(page: ParsedPage, prefix: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for tag in page.soup.find_all("meta"):
        key = str(tag.get("property") or tag.get("name") or "").strip().lower()
        if not key.startswith(prefix):
            continue
        content = clean_text(str(tag.get("content") or ""))
        short = key[len(prefix):]
        if short and content and short not in out:
            out[short] = content
    return out


def _language(page: ParsedPage) -> str | None:
    html_tag = page.soup.find("html")
    if isinstance(html_tag, Tag):
        lang = str(html_tag.get("lang") or html_tag.get("xml:lang") or "").strip()
        if lang:
            return lang
    tag = page.soup.find("meta", attrs={"http-equiv": re.compile(r"^content-language$", re.I)})
    if isinstance(tag, Tag):
        lang = str(tag.get("content") or "").strip()
        if lang:
            return lang
    return None


def _charset(page: ParsedPage, doc: Document) -> str | None:
    tag = page.soup.find("meta", charset=True)
    if isinstance(tag, Tag):
        return str(tag.get("charset")).strip().lower() or None
    tag = page.soup.find("meta", attrs={"http-equiv": re.compile(r"^content-type$", re.I)})
    raw = str(tag.get("content") or "") if isinstance(tag, Tag) else ""
    raw = raw or doc.content_type or ""
    m = re.search(r"charset=([\w-]+)", raw, flags=re.I)
    return m.group(1).lower() if m else None


def _favicon(page: ParsedPage) -> str | None:
    for tag in page.soup.find_all("link", href=True):
        if "icon" in _rel(tag) or "apple-touch-icon" in _rel(tag):
            resolved = page.absolute(str(tag.get("href")))
            if resolved:
                return resolved
    return None


def _structured_data(page: ParsedPage) -> list[str]:
    types: list[str] = []
    for node in page.jsonld:
        for t in jsonld_types(node):
            if t not in types:
                types.append(t)
    for tag in page.soup.find_all(attrs={"itemtype": True}):
        raw = str(tag.get("itemtype") or "").strip().rstrip("/")
        name = raw.rsplit("/", 1)[-1] if raw else ""
        if name and name not in types:
            types.append(name)
    return types


def feed_links(page: ParsedPage) -> list[tuple[str, str, str | None]]:
    """``(absolute_url, feed_type, title)`` for every feed ``<link>`` tag."""
    out: list[tuple[str, str, str | None]] = []
    seen: set[str] = set()
    for tag in page.soup.find_all("link", href=True):
        mime = str(tag.get("type") or "").split(";")[0].strip().lower()
        if mime not in FEED_MIME_TYPES:
            continue
        rel = _rel(tag)
        # text/xml and application/xml only count as feeds when declared as alternates
        if FEED_MIME_TYPES[mime] == "XML Feed" and "alternate" not in rel:
            continue
        url = page.absolute(str(tag.get("href")))
        if not url or url in seen:
            continue
        seen.add(url)
        title = clean_text(str(tag.get("title") or "")) or None
        out.append((url, FEED_MIME_TYPES[mime], title))
    return out


def extract(doc: Document) -> MetadataRecord:
    page = ParsedPage(doc.html, doc.final_url)

    canonical = None
    for tag in page.soup.find_all("link", href=True):
        if "canonical" in _rel(tag):
            canonical = page.absolute(str(tag.get("href")))
            break

    robots_tag = page.meta(name="robots") or None
    directives = [d.strip().lower() for d in (robots_tag or "").split(",") if d.strip()]

    keywords_raw = page.meta(name="keywords")
    keywords = [k.strip() for k in keywords_raw.split(",") if k.strip()]

    og = _prefixed_meta(page, "og:")
    twitter = _prefixed_meta(page, "twitter:")

    image = None
    if og.get("image"):
        image = page.absolute(og["image"])
    elif twitter.get("image"):
        image = page.absolute(twitter["image"])

    headings = {h: len(page.soup.find_all(h)) for h in ("h1", "h2")}

    return MetadataRecord(
        title=_title(page),
        description=page.meta(name="description"),
        keywords=keywords,
        canonical=canonical,
        robots=robots_tag,
        robots_directives=directives,
        language=_language(page),
        charset=_charset(page, doc),
        viewport=page.meta(name="viewport") or None,
        favicon=_favicon(page),
        image=image,
        open_graph=og,
        twitter_card=twitter,
        structured_data=_structured_data(page),
        headings=headings,
        feed_links=[u for u, _, _ in feed_links(page)],
    )
