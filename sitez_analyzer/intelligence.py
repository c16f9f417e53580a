"""External intelligence gateway.

Every capability (ssl, reputation, technology, performance) is backed by one
or more providers. Header grading reads the fetched response and never
leaves the process. Before a provider is called the gateway checks its own
cache and the provider's rate limiter; a provider that is rate limited,
unkeyed, slow or failing is reported as unavailable and never retried inside
the same request.
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable

import httpx
from pydantic import BaseModel

from .cache import CacheStore, MemoryCacheStore
from .config import Settings
from .errors import ProviderUnavailable, classify_error
from .logging_utils import get_logger
from .models import (
    Document,
    IntelligenceRecord,
    PerformanceRecord,
    ReputationRecord,
    SecurityHeadersRecord,
    SslRecord,
    TechnologyRecord,
)
from .providers import (
    BuiltWithProvider,
    DirectTlsProbe,
    PageSpeedProvider,
    SslLabsProvider,
    UrlscanProvider,
    VirusTotalProvider,
    blend_reputation,
    combine_pagespeed,
    fingerprint_technologies,
    grade_security_headers,
)
from .ratelimit import RateLimiter
from .urls import hostname_of

log = get_logger("intelligence")

CAPABILITIES = ("ssl", "reputation", "technology", "performance", "headers")

# adapters raise these when an upstream payload has an unexpected shape
_PAYLOAD_ERRORS = (ValueError, KeyError, TypeError, AttributeError, IndexError)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


class IntelligenceGateway:
    def __init__(
        self,
        settings: Settings,
        client: httpx.Client | None = None,
        cache: CacheStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        tls_probe: DirectTlsProbe | None = None,
    ):
        self.settings = settings
        self._client = client
        self._cache = cache if cache is not None else MemoryCacheStore()
        self.limiters: dict[str, RateLimiter] = {
            name: RateLimiter(limit.requests, limit.window_s, clock)
            for name, limit in settings.provider_limits.items()
        }
        self.ssl_labs = SslLabsProvider()
        self.tls_probe = tls_probe or DirectTlsProbe()
        self.virustotal = VirusTotalProvider(settings.virustotal_api_key)
        self.urlscan = UrlscanProvider(settings.urlscan_api_key)
        self.builtwith = BuiltWithProvider(settings.builtwith_api_key)
        self.pagespeed = PageSpeedProvider(settings.pagespeed_api_key)

    # -- plumbing ---------------------------------------------------------------

    def _timeout(self, provider: str, budget: float | None) -> float:
        limit = self.settings.provider_limits.get(provider)
        t = limit.timeout_s if limit else 15.0
        if budget is not None:
            t = min(t, max(0.5, budget))
        return t

    def _with_client(self, fn: Callable[[httpx.Client], Any]) -> Any:
        if self._client is not None:
            return fn(self._client)
        with httpx.Client(follow_redirects=True) as client:
            return fn(client)

    def _call(self, provider: str, cache_key: str, fn: Callable[[httpx.Client, float], Any],
              cancel: threading.Event | None, budget: float | None,
              model: type[BaseModel] | None = None) -> Any:
        """Cache, then rate limit, then call. Failures surface as ProviderUnavailable."""
        key = f"sitez:provider:{provider}:{cache_key}"
        cached = self._cache.get(key)
        if cached is not None:
            log.debug("provider cache hit %s", key)
            data = json.loads(cached)
            return model.model_validate(data) if model is not None else data

        if cancel is not None and cancel.is_set():
            raise ProviderUnavailable(provider, "cancelled")
        limiter = self.limiters.get(provider)
        if limiter is not None and not limiter.try_acquire():
            log.info("provider %s rate limited (retry in %.0fs)", provider, limiter.retry_after())
            raise ProviderUnavailable(provider, "rate_limited")
        if limiter is not None:
            log.debug("calling %s (%d calls left in window)", provider, limiter.remaining())

        timeout = self._timeout(provider, budget)
        try:
            result = self._with_client(lambda client: fn(client, timeout))
        except ProviderUnavailable:
            raise
        except httpx.HTTPError as e:
            reason = classify_error(e)
            raise ProviderUnavailable(provider, reason, f"{provider} request failed: {reason}")
        except _PAYLOAD_ERRORS as e:
            log.warning("provider %s returned an unexpected payload: %s", provider, e)
            raise ProviderUnavailable(provider, "error", f"{provider} returned an unexpected payload")

        payload = result.model_dump(mode="json") if isinstance(result, BaseModel) else result
        self._cache.set(key, json.dumps(payload), self.settings.provider_cache_ttl)
        return result

    @staticmethod
    def _usable(provider: Any) -> bool:
        return bool(provider.api_key) or not provider.requires_key

    # -- capabilities -----------------------------------------------------------

    def check_ssl(self, url: str, cancel: threading.Event | None = None, budget: float | None = None) -> SslRecord:
        host = hostname_of(url)
        if self.settings.ssl_labs_enabled:
            try:
                return self._call(
                    self.ssl_labs.name, host,
                    lambda client, t: self.ssl_labs.fetch(client, host, t),
                    cancel, budget, SslRecord,
                )
            except ProviderUnavailable as e:
                log.info("ssl_labs unavailable for %s (%s); using direct TLS", host, e.reason)

        if cancel is not None and cancel.is_set():
            return SslRecord(provider=self.tls_probe.name, error="cancelled")
        timeout = min(10.0, budget) if budget is not None else 10.0
        try:
            return self.tls_probe.fetch(host, timeout=max(0.5, timeout))
        except ProviderUnavailable as e:
            return SslRecord(provider=self.tls_probe.name, error=e.message)

    def check_reputation(self, url: str, cancel: threading.Event | None = None,
                         budget: float | None = None) -> ReputationRecord:
        host = hostname_of(url)
        vt = urlscan = None
        problems: list[str] = []
        if not self._usable(self.virustotal):
            problems.append(ProviderUnavailable(self.virustotal.name, "no_api_key").message)
        else:
            try:
                vt = self._call(
                    self.virustotal.name, _digest(url),
                    lambda client, t: self.virustotal.fetch(client, url, t),
                    cancel, budget,
                )
            except ProviderUnavailable as e:
                problems.append(e.message)
        try:
            urlscan = self._call(
                self.urlscan.name, host,
                lambda client, t: self.urlscan.fetch(client, host, t),
                cancel, budget,
            )
        except ProviderUnavailable as e:
            problems.append(e.message)

        if vt is None and urlscan is None:
            return ReputationRecord(error="; ".join(problems) or "no reputation provider available")
        record = blend_reputation(vt, urlscan)
        if problems:
            record.details["unavailable"] = problems
        return record

    def detect_technology(self, url: str, doc: Document | None = None, cancel: threading.Event | None = None,
                          budget: float | None = None) -> TechnologyRecord:
        host = hostname_of(url)
        if self._usable(self.builtwith):
            try:
                return self._call(
                    self.builtwith.name, host,
                    lambda client, t: self.builtwith.fetch(client, host, t),
                    cancel, budget, TechnologyRecord,
                )
            except ProviderUnavailable as e:
                log.info("builtwith unavailable for %s (%s)", host, e.reason)
        if doc is None:
            return TechnologyRecord(error="no document available for fingerprinting")
        return fingerprint_technologies(doc)

    def measure_performance(self, url: str, cancel: threading.Event | None = None,
                            budget: float | None = None) -> PerformanceRecord:
        results: dict[str, dict[str, Any] | None] = {"mobile": None, "desktop": None}
        problems: list[str] = []
        for strategy in ("mobile", "desktop"):
            try:
                results[strategy] = self._call(
                    self.pagespeed.name, f"{strategy}:{_digest(url)}",
                    lambda client, t, s=strategy: self.pagespeed.fetch_strategy(client, url, s, t),
                    cancel, budget,
                )
            except ProviderUnavailable as e:
                problems.append(f"{strategy}: {e.message}")
        if results["mobile"] is None and results["desktop"] is None:
            return PerformanceRecord(error="; ".join(problems))
        return combine_pagespeed(results["mobile"], results["desktop"])

    def run_capability(self, capability: str, url: str, doc: Document | None = None,
                       cancel: threading.Event | None = None, budget: float | None = None) -> BaseModel:
        if capability == "ssl":
            return self.check_ssl(url, cancel, budget)
        if capability == "reputation":
            return self.check_reputation(url, cancel, budget)
        if capability == "technology":
            return self.detect_technology(url, doc, cancel, budget)
        if capability == "performance":
            return self.measure_performance(url, cancel, budget)
        if capability == "headers":
            return self.check_headers(doc)
        raise ValueError(f"Unknown capability: {capability}")

    def check_headers(self, doc: Document | None) -> SecurityHeadersRecord:
        if doc is None:
            return SecurityHeadersRecord(error="no document available for header analysis")
        return grade_security_headers(doc.headers)

    def _failed(self, capability: str, message: str) -> BaseModel:
        """Stand-in sub-record for a capability that crashed."""
        if capability == "ssl":
            provider = self.ssl_labs.name if self.settings.ssl_labs_enabled else self.tls_probe.name
            return SslRecord(provider=provider, error=message)
        if capability == "reputation":
            return ReputationRecord(error=message)
        if capability == "technology":
            return TechnologyRecord(error=message)
        if capability == "performance":
            return PerformanceRecord(error=message)
        return SecurityHeadersRecord(error=message)

    # -- assembly ---------------------------------------------------------------

    def assemble(self, parts: dict[str, BaseModel]) -> IntelligenceRecord:
        """Build the record and its blended score from whatever capabilities ran."""
        record = IntelligenceRecord(
            ssl=parts.get("ssl"),
            reputation=parts.get("reputation"),
            technology=parts.get("technology"),
            performance=parts.get("performance"),
            headers=parts.get("headers"),
        )
        subs: dict[str, int] = {}
        if record.ssl is not None and record.ssl.error is None and record.ssl.score is not None:
            subs["ssl"] = record.ssl.score
        if record.headers is not None and record.headers.error is None and record.headers.score is not None:
            subs["security"] = record.headers.score
        rep = record.reputation
        if rep is not None and rep.error is None and rep.reputation_score is not None:
            subs["reputation"] = rep.reputation_score
        if record.performance is not None and record.performance.error is None and record.performance.score is not None:
            subs["performance"] = record.performance.score
        record.sub_scores = subs

        weights = {k: self.settings.intelligence_weights.get(k, 0.0) for k in subs}
        total = sum(weights.values())
        if subs and total > 0:
            record.score = max(0, min(100, round(sum(subs[k] * weights[k] for k in subs) / total)))
        return record

    def analyze(self, url: str, capabilities: set[str] | list[str], doc: Document | None = None,
                cancel: threading.Event | None = None, timeout: float | None = None) -> IntelligenceRecord:
        """Run the requested capabilities concurrently and assemble the record."""
        wanted = [c for c in CAPABILITIES if c in set(capabilities)]
        parts: dict[str, BaseModel] = {}
        if not wanted:
            return self.assemble(parts)
        with ThreadPoolExecutor(max_workers=len(wanted)) as pool:
            futures = {pool.submit(self.run_capability, c, url, doc, cancel, timeout): c for c in wanted}
            for fut in as_completed(futures):
                cap = futures[fut]
                try:
                    parts[cap] = fut.result()
                except Exception as e:
                    log.warning("capability %s failed: %s", cap, e)
                    parts[cap] = self._failed(cap, f"{type(e).__name__}: {e}")
        return self.assemble(parts)
