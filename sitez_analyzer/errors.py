"""Exception taxonomy for the analysis pipeline.

Only ``InvalidInput`` and ``FetchFailure`` ever end a request early, and even
those are turned into an ``errors`` entry on the returned result. The other
classes are raised inside a single category and recorded against it.
"""
from __future__ import annotations

from typing import Any

import httpx


class SiteZError(Exception):
    error_code: str = "SITEZ_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            out["details"] = self.details
        return out


class InvalidInput(SiteZError):
    """The URL is not a well-formed absolute http(s) URL."""

    error_code = "INVALID_INPUT"
    status_code = 400

    def __init__(self, url: str, reason: str = "Invalid URL"):
        super().__init__(f"{reason}: {url}", details={"url": url, "reason": reason})


class FetchFailure(SiteZError):
    error_code = "FETCH_FAILURE"
    status_code = 502

    def __init__(self, url: str, reason: str, message: str | None = None, status: int | None = None):
        details: dict[str, Any] = {"url": url, "reason": reason}
        if status is not None:
            details["status"] = status
        super().__init__(message or f"Unable to fetch {url} ({reason})", details=details)
        self.reason = reason
        self.status = status


class ExtractionFailure(SiteZError):
    error_code = "EXTRACTION_FAILURE"

    def __init__(self, category: str, message: str):
        super().__init__(message, details={"category": category})
        self.category = category


class ProviderUnavailable(SiteZError):
    """An external capability was skipped: disabled, rate limited, unkeyed or failing."""

    error_code = "PROVIDER_UNAVAILABLE"
    status_code = 503

    def __init__(self, provider: str, reason: str, message: str | None = None):
        super().__init__(
            message or f"{provider} unavailable ({reason})",
            details={"provider": provider, "reason": reason},
        )
        self.provider = provider
        self.reason = reason


def classify_error(err: BaseException) -> str:
    """Map a transport exception to a short reason string."""
    if isinstance(err, FetchFailure):
        return err.reason
    if isinstance(err, httpx.TimeoutException):
        return "timeout"
    if isinstance(err, httpx.ConnectError):
        msg = str(err).lower()
        if "name or service not known" in msg or "nodename nor servname" in msg or "getaddrinfo" in msg:
            return "dns"
        if "ssl" in msg or "certificate" in msg:
            return "ssl"
        return "connection"
    if isinstance(err, httpx.TooManyRedirects):
        return "too_many_redirects"
    msg = str(err).lower()
    if "timed out" in msg or "timeout" in msg:
        return "timeout"
    if "ssl" in msg or "certificate" in msg:
        return "ssl"
    if "connection" in msg or "refused" in msg or "reset" in msg:
        return "connection"
    return "error"
