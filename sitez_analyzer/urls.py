from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse, urlunparse

from .errors import InvalidInput

_HOST_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(raw: str) -> str:
    """Validate an absolute http(s) URL and return its canonical form.

    Scheme and host are lowercased, default ports and fragments dropped, and an
    empty path becomes ``/`` so that ``https://Example.com`` and
    ``https://example.com/`` share one cache key.
    """
    value = (raw or "").strip()
    if not value:
        raise InvalidInput(raw or "", "Empty URL")
    if any(ch.isspace() for ch in value):
        raise InvalidInput(value, "URL contains whitespace")

    try:
        parsed = urlparse(value)
        port = parsed.port
    except ValueError:
        raise InvalidInput(value, "Malformed URL")

    scheme = (parsed.scheme or "").lower()
    if scheme not in ("http", "https"):
        raise InvalidInput(value, "URL must be absolute http(s)")
    host = (parsed.hostname or "").lower().rstrip(".")
    if not host or "." not in host or not _HOST_RE.match(host):
        raise InvalidInput(value, "Invalid host")

    netloc = host
    if port and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = parsed.path or "/"
    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ""))


def hostname_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def registrable_domain_guess(hostname: str) -> str:
    parts = [p for p in hostname.split(".") if p]
    if len(parts) <= 2:
        return hostname
    return ".".join(parts[-2:])


def resolve(base: str, href: str) -> str | None:
    """Resolve ``href`` against ``base``; only http(s) results are kept."""
    href = (href or "").strip()
    if not href or href.startswith(("javascript:", "data:", "#")):
        return None
    try:
        out = urljoin(base, href)
        p = urlparse(out)
    except ValueError:
        return None
    if p.scheme not in ("http", "https") or not p.hostname:
        return None
    return urlunparse(p._replace(fragment=""))
