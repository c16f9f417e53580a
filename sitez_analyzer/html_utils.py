from __future__ import annotations

import json
import re
from typing import Any, Iterator

from bs4 import BeautifulSoup
from bs4.element import Tag

from .logging_utils import get_logger
from .urls import resolve

log = get_logger("html")

_WS_RE = re.compile(r"\s+")


def parse_html(html: str) -> BeautifulSoup:
    """Parse leniently; never raises on broken markup."""
    cleaned = (html or "").replace("\x00", "")
    try:
        return BeautifulSoup(cleaned, "lxml")
    except Exception as e:
        log.debug("lxml parse failed, retrying with html.parser: %s", e)
        try:
            return BeautifulSoup(cleaned, "html.parser")
        except Exception:
            return BeautifulSoup("", "html.parser")


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    return _WS_RE.sub(" ", value).strip()


def try_parse_json_fragment(s: str) -> Any | None:
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        pass
    m = re.search(r"(\{.*\}|\[.*\])", s, flags=re.DOTALL)
    if not m:
        return None
    try:
        return json.loads(m.group(1))
    except ValueError:
        return None


def walk_json(obj: Any) -> Iterator[dict]:
    if isinstance(obj, dict):
        yield obj
        for v in obj.values():
            yield from walk_json(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from walk_json(v)


def jsonld_types(node: dict) -> list[str]:
    t = node.get("@type")
    if isinstance(t, str):
        return [t]
    if isinstance(t, list):
        return [x for x in t if isinstance(x, str)]
    return []


class ParsedPage:
    """One parsed view of a document; each extractor builds its own."""

    def __init__(self, html: str, url: str):
        self.html = html or ""
        self.url = url
        self.soup = parse_html(self.html)
        self.base_url = self._base_url()
        self._text: str | None = None
        self._jsonld: list[dict] | None = None

    def _base_url(self) -> str:
        base = self.soup.find("base", href=True)
        if isinstance(base, Tag):
            resolved = resolve(self.url, str(base.get("href")))
            if resolved:
                return resolved
        return self.url

    @property
    def text(self) -> str:
        """Visible text with scripts and styles removed."""
        if self._text is None:
            soup = parse_html(self.html)
            for tag in soup(["script", "style", "noscript", "template"]):
                tag.decompose()
            self._text = soup.get_text(" ", strip=True)
        return self._text

    @property
    def jsonld(self) -> list[dict]:
        """Every object node found in the page's JSON-LD blocks."""
        if self._jsonld is None:
            nodes: list[dict] = []
            for script in self.soup.find_all("script", type=re.compile(r"ld\+json", re.I)):
                parsed = try_parse_json_fragment(script.string or script.get_text() or "")
                if parsed is None:
                    continue
                nodes.extend(walk_json(parsed))
            self._jsonld = nodes
        return self._jsonld

    def meta(self, *, name: str | None = None, prop: str | None = None) -> str:
        attrs: dict[str, Any] = {}
        if name:
            attrs["name"] = re.compile(rf"^{re.escape(name)}$", re.I)
        if prop:
            attrs["property"] = re.compile(rf"^{re.escape(prop)}$", re.I)
        tag = self.soup.find("meta", attrs=attrs)
        if isinstance(tag, Tag):
            return clean_text(str(tag.get("content") or ""))
        return ""

    def absolute(self, href: str | None) -> str | None:
        return resolve(self.base_url, href or "")
