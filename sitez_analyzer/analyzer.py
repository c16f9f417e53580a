from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import httpx
from pydantic import ValidationError

from .cache import CacheStore, SingleFlight, build_cache_store, derive_cache_key, stale_key
from .config import Settings
from .errors import FetchFailure, InvalidInput
from .extractors import run_extractor
from .fallbacks import FallbackProvider
from .fetcher import Fetcher
from .intelligence import IntelligenceGateway
from .logging_utils import get_logger
from .models import QUICK_PROFILE, AnalysisOptions, AnalysisResult, AnalysisSummary, Document, ExtractionOutcome
from .scoring import (
    build_recommendations,
    grade_info,
    has_data,
    improvement_potential,
    score_records,
    strengths_and_weaknesses,
)
from .urls import normalize_url

log = get_logger("analyzer")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_options(options: AnalysisOptions | Mapping[str, Any] | None) -> AnalysisOptions:
    if options is None:
        return AnalysisOptions()
    if isinstance(options, AnalysisOptions):
        return options
    return AnalysisOptions.model_validate(options)


def _options_error(err: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(p) for p in e['loc']) or 'options'}: {e['msg']}"
        for e in err.errors()
    ]
    return "Invalid options: " + "; ".join(problems)


class Analyzer:
    """Runs one analysis per call: cache, fetch, fan out, score, cache.

    ``analyze`` never raises. Invalid input and fetch failures come back as a
    zero-score result with ``errors`` populated; anything that goes wrong
    inside a single category is recorded under that category and the rest of
    the report is still produced.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cache: CacheStore | None = None,
        fetcher: Fetcher | None = None,
        gateway: IntelligenceGateway | None = None,
        fallbacks: FallbackProvider | None = None,
        single_flight: SingleFlight | None = None,
        client: httpx.Client | None = None,
    ):
        self.settings = settings or Settings.from_env()
        self.cache = cache if cache is not None else build_cache_store(self.settings)
        self.fetcher = fetcher or Fetcher(client, max_html_kb=self.settings.max_html_kb)
        self.gateway = gateway or IntelligenceGateway(self.settings, client=client, cache=self.cache)
        self.fallbacks = fallbacks or FallbackProvider(
            title=self.settings.fallback_title,
            description=self.settings.fallback_description,
            image=self.settings.fallback_image,
        )
        self.single_flight = single_flight or SingleFlight(self.settings.single_flight)

    # -- public -------------------------------------------------------------------

    def analyze(self, url: str, options: AnalysisOptions | Mapping[str, Any] | None = None) -> AnalysisResult:
        t0 = time.perf_counter()
        try:
            options = _coerce_options(options)
        except ValidationError as e:
            message = _options_error(e)
            log.info("rejecting options for %r: %s", url, message)
            return self._degraded(url, None, {"input": message}, t0)

        try:
            normalized = normalize_url(url)
        except InvalidInput as e:
            log.info("rejecting %r: %s", url, e.message)
            return self._degraded(url, None, {"input": e.message}, t0)

        if not options.use_cache:
            return self._run(normalized, options, None, t0)

        key = derive_cache_key(normalized, options)
        hit = self._cached(key)
        if hit is not None:
            return hit

        leader = self.single_flight.enter(key, timeout=options.timeout)
        try:
            # whoever held the key before us may have filled it
            hit = self._cached(key)
            if hit is not None:
                return hit
            return self._run(normalized, options, key, t0)
        finally:
            if leader:
                self.single_flight.exit(key)

    def analyze_many(self, urls: Iterable[str], options: AnalysisOptions | Mapping[str, Any] | None = None) -> list[AnalysisResult]:
        return [self.analyze(u, options) for u in urls]

    # -- pipeline -----------------------------------------------------------------

    def _cached(self, key: str) -> AnalysisResult | None:
        payload = self.cache.get(key)
        if payload is None:
            return None
        log.info("cache hit %s", key)
        return AnalysisResult.model_validate_json(payload)

    def _run(self, url: str, options: AnalysisOptions, key: str | None, t0: float) -> AnalysisResult:
        timings: dict[str, int] = {}

        def timed(name: str, fn):
            start = time.perf_counter()
            try:
                return fn()
            finally:
                timings[name] = int((time.perf_counter() - start) * 1000)

        user_agent = options.user_agent or self.settings.user_agent
        try:
            doc = timed("fetch", lambda: self.fetcher.fetch(
                url, timeout=options.timeout, user_agent=user_agent, max_redirects=self.settings.max_redirects,
            ))
        except FetchFailure as e:
            log.warning("fetch failed for %s: %s", url, e.message)
            stale = self._stale(key, e.message) if key is not None else None
            if stale is not None:
                return stale
            return self._degraded(url, url, {"fetch": e.message}, t0, timings)

        records, errors = self._dispatch(doc, options, t0, timed)
        result = self._assemble(url, doc, options, records, errors, t0, timings)

        if key is not None and not result.errors:
            payload = result.model_dump_json()
            self.cache.set(key, payload, options.cache_duration)
            self.cache.set(stale_key(key), payload, max(self.settings.stale_ttl, options.cache_duration))
            return AnalysisResult.model_validate_json(payload)
        if result.errors:
            log.info("not caching %s: errors in %s", url, ", ".join(sorted(result.errors)))
        return result

    def _dispatch(self, doc: Document, options: AnalysisOptions, t0: float, timed) -> tuple[dict[str, Any], dict[str, str]]:
        """Fan the document out to every enabled category and join before the deadline."""
        categories = options.enabled_categories()
        capabilities = options.capabilities()
        deadline = t0 + options.timeout
        cancel = threading.Event()

        records: dict[str, Any] = {}
        errors: dict[str, str] = {}

        def collect(category: str, fut: Future) -> None:
            try:
                value = fut.result()
            except Exception as e:
                log.warning("category %s failed for %s: %s", category, doc.final_url, e)
                errors[category] = f"{type(e).__name__}: {e}"
                return
            if isinstance(value, ExtractionOutcome):
                if value.ok:
                    records[category] = value.record
                else:
                    errors[category] = value.error or "extraction failed"
            else:
                records[category] = value

        pool = ThreadPoolExecutor(max_workers=min(self.settings.max_workers, max(1, len(categories))))
        futures: dict[Future, str] = {}
        try:
            for category in categories:
                if category == "intelligence":
                    budget = max(0.5, deadline - time.perf_counter())
                    fut = pool.submit(timed, category, lambda b=budget: self.gateway.analyze(
                        doc.final_url, capabilities, doc=doc, cancel=cancel, timeout=b,
                    ))
                else:
                    fut = pool.submit(timed, category, lambda c=category: run_extractor(c, doc))
                futures[fut] = category

            try:
                for fut in as_completed(futures, timeout=max(0.0, deadline - time.perf_counter())):
                    collect(futures[fut], fut)
            except FuturesTimeout:
                cancel.set()
                for fut, category in futures.items():
                    if category in records or category in errors:
                        continue
                    if fut.done():
                        collect(category, fut)
                    else:
                        log.warning("category %s timed out for %s", category, doc.final_url)
                        errors[category] = f"timed out after {options.timeout:g}s"
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return records, errors

    def _assemble(self, url: str, doc: Document, options: AnalysisOptions, records: dict[str, Any],
                  errors: dict[str, str], t0: float, timings: dict[str, int]) -> AnalysisResult:
        # Score the records as extracted; fallbacks only affect what is displayed.
        ordered = {c: records[c] for c in options.enabled_categories() if c in records}
        card = score_records(ordered, self.settings)
        recs = build_recommendations(ordered, card.component_scores, self.settings)
        strengths, weaknesses = strengths_and_weaknesses(card.component_scores)
        info = grade_info(card.overall_grade, self.settings.grade_thresholds)

        metadata = records.get("metadata")
        if metadata is not None:
            metadata = self.fallbacks.apply(metadata, doc.final_url)

        enabled = options.enabled_categories()
        produced = [c for c in enabled if has_data(c, records.get(c))]
        summary = AnalysisSummary(
            components_analyzed=produced,
            completeness=round(100 * len(produced) / len(enabled)) if enabled else 0,
            total_recommendations=len(recs),
            high_priority_recommendations=sum(1 for r in recs if r.priority in ("critical", "high")),
            errors_count=len(errors),
            grade_description=info.description,
            strengths=strengths,
            weaknesses=weaknesses,
            improvement_potential=improvement_potential(card.component_scores),
        )

        timings["total"] = int((time.perf_counter() - t0) * 1000)
        return AnalysisResult(
            url=url,
            final_url=doc.final_url,
            metadata=metadata,
            social=records.get("social"),
            contact=records.get("contact"),
            feeds=records.get("feeds"),
            intelligence=records.get("intelligence"),
            component_scores=card.component_scores,
            score_components=card.components,
            overall_score=card.overall_score,
            overall_grade=card.overall_grade,
            grade_info=info,
            recommendations=recs,
            errors=errors,
            summary=summary,
            analysis_time_ms=timings["total"],
            timings_ms=dict(timings),
            analyzed_at=_now_iso(),
        )

    def _stale(self, key: str, message: str) -> AnalysisResult | None:
        payload = self.cache.get(stale_key(key))
        if payload is None:
            return None
        log.info("serving stale analysis for %s", key)
        result = AnalysisResult.model_validate_json(payload)
        result.stale = True
        result.errors = {"fetch": message}
        result.summary.errors_count = 1
        return result

    def _degraded(self, url: str, final_url: str | None, errors: dict[str, str], t0: float,
                  timings: dict[str, int] | None = None) -> AnalysisResult:
        timings = dict(timings or {})
        timings["total"] = int((time.perf_counter() - t0) * 1000)
        info = grade_info("F", self.settings.grade_thresholds)
        return AnalysisResult(
            url=url,
            final_url=final_url,
            overall_score=0,
            overall_grade="F",
            grade_info=info,
            errors=errors,
            summary=AnalysisSummary(errors_count=len(errors), grade_description=info.description),
            analysis_time_ms=timings["total"],
            timings_ms=timings,
            analyzed_at=_now_iso(),
        )


_default: Analyzer | None = None
_default_lock = threading.Lock()


def default_analyzer() -> Analyzer:
    global _default
    with _default_lock:
        if _default is None:
            _default = Analyzer()
        return _default


def analyze(url: str, options: AnalysisOptions | Mapping[str, Any] | None = None) -> AnalysisResult:
    return default_analyzer().analyze(url, options)


def quick_analyze(url: str, **overrides: Any) -> AnalysisResult:
    return default_analyzer().analyze(url, {**QUICK_PROFILE, **overrides})
