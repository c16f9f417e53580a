from __future__ import annotations

import httpx

from .errors import FetchFailure, classify_error
from .logging_utils import get_logger
from .models import Document

log = get_logger("fetch")

_HEADER_ALLOW = {
    "server", "x-powered-by", "strict-transport-security", "content-security-policy",
    "x-frame-options", "x-content-type-options", "x-xss-protection",
    "referrer-policy", "permissions-policy", "content-type",
    "x-generator", "set-cookie", "via", "cf-ray",
}


class Fetcher:
    """Fetches the analysed page once, following redirects by hand.

    A shared ``httpx.Client`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise a client is opened per call.
    """

    def __init__(self, client: httpx.Client | None = None, max_html_kb: int = 2048):
        self._client = client
        self.max_html_kb = max_html_kb

    def fetch(self, url: str, *, timeout: float, user_agent: str, max_redirects: int = 5,
              headers: dict[str, str] | None = None) -> Document:
        req_headers = {
            "user-agent": user_agent,
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.6",
        }
        if headers:
            req_headers.update(headers)

        try:
            if self._client is not None:
                return self._follow(self._client, url, timeout, req_headers, max_redirects)
            with httpx.Client(timeout=timeout, follow_redirects=False) as client:
                return self._follow(client, url, timeout, req_headers, max_redirects)
        except FetchFailure:
            raise
        except httpx.HTTPError as e:
            reason = classify_error(e)
            log.info("fetch %s failed: %s (%s)", url, reason, e)
            raise FetchFailure(url, reason, message=f"Unable to fetch {url}: {e}")

    def _follow(self, client: httpx.Client, url: str, timeout: float,
                headers: dict[str, str], max_redirects: int) -> Document:
        current = url
        chain: list[str] = []
        for _ in range(max_redirects + 1):
            with client.stream("GET", current, headers=headers, timeout=timeout, follow_redirects=False) as res:
                if 300 <= res.status_code < 400 and res.headers.get("location"):
                    chain.append(current)
                    current = str(httpx.URL(current).join(res.headers["location"]))
                    continue

                if res.status_code >= 400 or res.status_code < 200:
                    raise FetchFailure(url, "http_status", message=f"HTTP {res.status_code} for {current}",
                                       status=res.status_code)

                body = self._read_capped(res)
                return self._document(url, current, chain, res, body)

        raise FetchFailure(url, "too_many_redirects", message=f"More than {max_redirects} redirects")

    def _read_capped(self, res: httpx.Response) -> bytes:
        """Read at most ``max_html_kb`` from the wire; the rest is never downloaded."""
        limit = self.max_html_kb * 1024
        buf = bytearray()
        for chunk in res.iter_bytes():
            buf += chunk[: limit - len(buf)]
            if len(buf) >= limit:
                log.debug("truncated %s at %d bytes", res.url, limit)
                break
        return bytes(buf)

    def _document(self, url: str, current: str, chain: list[str], res: httpx.Response, body: bytes) -> Document:
        if not body.strip():
            raise FetchFailure(url, "empty_body", message=f"Empty response body from {current}",
                               status=res.status_code)

        encoding = res.charset_encoding or "utf-8"
        try:
            html = body.decode(encoding, errors="replace")
        except LookupError:
            html = body.decode("utf-8", errors="replace")

        kept = {k.lower(): v for k, v in res.headers.items() if k.lower() in _HEADER_ALLOW}
        return Document(
            url=url,
            final_url=current,
            status_code=res.status_code,
            content_type=res.headers.get("content-type"),
            headers=kept,
            redirect_chain=chain,
            html=html,
        )
