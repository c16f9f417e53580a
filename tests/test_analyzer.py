import threading
import time

import httpx

from sitez_analyzer import analyzer as analyzer_module
from sitez_analyzer import extractors
from sitez_analyzer.cache import MemoryCacheStore
from sitez_analyzer.config import Settings
from sitez_analyzer.models import AnalysisOptions
from sitez_analyzer.ratelimit import RateLimiter

from conftest import RICH_HTML, SAMPLE_HTML, build_analyzer


URL = "https://example.com/"


class Site:
    """Serves one page and counts how often it was fetched."""

    def __init__(self, html=SAMPLE_HTML, status=200, delay=0.0):
        self.html = html
        self.status = status
        self.delay = delay
        self.page_hits = 0
        self.hosts = []
        self._lock = threading.Lock()

    def __call__(self, request):
        self.hosts.append(request.url.host)
        if request.url.host == "example.com":
            with self._lock:
                self.page_hits += 1
            if self.delay:
                time.sleep(self.delay)
            if self.status != 200:
                return httpx.Response(self.status, text="error")
            return httpx.Response(200, html=self.html)
        return httpx.Response(404)


def test_end_to_end_sample_page():
    site = Site()
    result = build_analyzer(site).analyze(URL)

    assert result.errors == {}
    assert result.url == URL
    assert result.final_url == URL
    assert result.metadata.title == "Home"
    assert result.contact.emails == ["info@example.com"]
    assert result.contact.phones[0].formatted == "(415) 555-1234"
    assert result.feeds.urls == ["https://example.com/feed.xml"]

    # the fallback description is for display only and does not earn points
    assert result.metadata.description.startswith("Detailed analysis of example.com")
    assert result.metadata.fallbacks_used == ["description"]
    assert result.component_scores == {"metadata": 20, "contact": 27, "intelligence": 45, "feeds": 80}
    # no security headers on the page: intelligence (100*.25 + 0*.30) / .55
    assert result.overall_score == 37
    assert result.overall_grade == "F"
    assert result.grade_info.description == "Unacceptable"

    intel = result.intelligence
    assert intel.ssl.provider == "tls"
    assert intel.technology.provider == "heuristic"
    assert intel.reputation.error is not None
    assert intel.performance.error is not None
    assert intel.headers.score == 0
    assert intel.headers.missing_critical == [
        "strict-transport-security", "content-security-policy", "x-frame-options", "x-content-type-options",
    ]
    assert any(r.title == "Add missing security headers" for r in result.recommendations)

    assert result.summary.components_analyzed == ["metadata", "contact", "intelligence", "feeds"]
    assert result.summary.completeness == 80
    assert result.summary.high_priority_recommendations == 1
    assert result.summary.total_recommendations == len(result.recommendations)
    assert result.recommendations[0].title == "Add a meta description"
    assert {"fetch", "metadata", "intelligence", "total"} <= set(result.timings_ms)
    assert result.analysis_time_ms == result.timings_ms["total"]


def test_second_call_is_served_from_cache_byte_identical():
    site = Site(RICH_HTML)
    analyzer = build_analyzer(site)
    first = analyzer.analyze(URL)
    second = analyzer.analyze("https://EXAMPLE.com")
    third = analyzer.analyze(URL)

    assert first.errors == {}
    assert site.page_hits == 1
    assert second.model_dump_json() == first.model_dump_json()
    assert third.model_dump_json() == second.model_dump_json()


def test_different_options_do_not_share_cache():
    site = Site()
    analyzer = build_analyzer(site)
    analyzer.analyze(URL, AnalysisOptions.quick())
    analyzer.analyze(URL, AnalysisOptions.quick(include_feeds=True))
    assert site.page_hits == 2


def test_use_cache_false_always_fetches():
    site = Site()
    analyzer = build_analyzer(site)
    opts = AnalysisOptions.quick(use_cache=False)
    analyzer.analyze(URL, opts)
    analyzer.analyze(URL, opts)
    assert site.page_hits == 2


def test_extractor_failure_is_isolated_and_not_cached(monkeypatch):
    def boom(doc):
        raise RuntimeError("social table corrupt")

    monkeypatch.setitem(extractors.EXTRACTORS, "social", boom)
    site = Site()
    analyzer = build_analyzer(site)
    opts = AnalysisOptions.quick()

    result = analyzer.analyze(URL, opts)
    assert result.errors == {"social": "RuntimeError: social table corrupt"}
    assert result.social is None
    assert result.metadata.title == "Home"
    assert "social" not in result.component_scores
    assert result.summary.errors_count == 1

    analyzer.analyze(URL, opts)
    assert site.page_hits == 2


def test_fetch_failure_yields_zero_confidence_report():
    site = Site(status=503)
    analyzer = build_analyzer(site)
    result = analyzer.analyze(URL)

    assert set(result.errors) == {"fetch"}
    assert "503" in result.errors["fetch"]
    assert result.overall_score == 0
    assert result.overall_grade == "F"
    assert result.component_scores == {}
    assert result.metadata is None and result.intelligence is None
    assert result.stale is False

    analyzer.analyze(URL)
    assert site.page_hits == 2


def test_invalid_url_never_raises():
    site = Site()
    result = build_analyzer(site).analyze("not a url")
    assert set(result.errors) == {"input"}
    assert result.overall_score == 0
    assert result.overall_grade == "F"
    assert site.hosts == []


def test_stale_copy_is_served_when_fetch_fails(clock):
    site = Site()
    analyzer = build_analyzer(site, cache=MemoryCacheStore(clock=clock))
    opts = AnalysisOptions.quick(cache_duration=60)
    fresh = analyzer.analyze(URL, opts)
    assert fresh.errors == {}

    clock.advance(120)
    site.status = 500
    result = analyzer.analyze(URL, opts)

    assert site.page_hits == 2
    assert result.stale is True
    assert set(result.errors) == {"fetch"}
    assert result.metadata.title == "Home"
    assert result.overall_score == fresh.overall_score


def test_ssl_disabled_and_reputation_rate_limited():
    site = Site()
    analyzer = build_analyzer(site, settings=Settings(ssl_labs_enabled=False, virustotal_api_key="vt"))
    analyzer.gateway.limiters["virustotal"] = RateLimiter(0, 60)
    analyzer.gateway.limiters["urlscan"] = RateLimiter(0, 60)
    opts = AnalysisOptions(
        include_ssl=False, include_technology=False, include_performance=False, include_headers=False,
    )

    result = analyzer.analyze(URL, opts)

    assert result.errors == {}
    assert result.intelligence.ssl is None
    assert "rate_limited" in result.intelligence.reputation.error
    assert "intelligence" not in result.component_scores
    assert result.component_scores == {"metadata": 20, "contact": 27, "feeds": 80}
    # (20*.30 + 27*.15 + 80*.10) / .55
    assert result.overall_score == 33
    assert site.hosts == ["example.com"]


def test_quick_profile_skips_intelligence_and_feeds():
    site = Site()
    result = build_analyzer(site).analyze(URL, AnalysisOptions.quick())
    assert result.intelligence is None
    assert result.feeds is None
    assert set(result.component_scores) == {"metadata", "contact"}
    assert site.hosts == ["example.com"]


def test_slow_category_is_cut_off_at_the_deadline(monkeypatch):
    release = threading.Event()

    def slow(doc):
        release.wait(5)
        raise RuntimeError("should have been abandoned")

    monkeypatch.setitem(extractors.EXTRACTORS, "contact", slow)
    try:
        result = build_analyzer(Site()).analyze(URL, AnalysisOptions.quick(timeout=0.3))
        assert result.errors == {"contact": "timed out after 0.3s"}
        assert result.metadata.title == "Home"
        assert "contact" not in result.component_scores
    finally:
        release.set()


def test_intelligence_crash_is_recorded(monkeypatch):
    site = Site()
    analyzer = build_analyzer(site)

    def crash(*args, **kwargs):
        raise RuntimeError("gateway down")

    monkeypatch.setattr(analyzer.gateway, "analyze", crash)
    result = analyzer.analyze(URL)
    assert result.errors == {"intelligence": "RuntimeError: gateway down"}
    assert result.metadata.title == "Home"


def test_concurrent_identical_requests_share_one_fetch():
    site = Site(delay=0.2)
    analyzer = build_analyzer(site)
    results = []

    def run():
        results.append(analyzer.analyze(URL, AnalysisOptions.quick()))

    threads = [threading.Thread(target=run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 3
    assert site.page_hits == 1
    assert len({r.model_dump_json() for r in results}) == 1


def test_analyze_many():
    site = Site()
    results = build_analyzer(site).analyze_many([URL, "bogus"], AnalysisOptions.quick())
    assert [bool(r.errors) for r in results] == [False, True]


def test_options_may_be_a_plain_dict():
    site = Site()
    result = build_analyzer(site).analyze(URL, {"use_cache": False, "include_intelligence": False})
    assert result.errors == {}
    assert result.intelligence is None
    assert result.metadata.title == "Home"


def test_invalid_options_degrade_instead_of_raising():
    site = Site()
    result = build_analyzer(site).analyze(URL, {"timeout": 0})
    assert set(result.errors) == {"input"}
    assert result.errors["input"].startswith("Invalid options: timeout:")
    assert result.overall_score == 0
    assert site.hosts == []


def test_module_level_helpers_use_the_default_analyzer(monkeypatch):
    site = Site()
    monkeypatch.setattr(analyzer_module, "_default", build_analyzer(site))

    full = analyzer_module.analyze(URL, {"include_performance": False})
    assert full.intelligence is not None
    assert full.intelligence.performance is None

    quick = analyzer_module.quick_analyze(URL)
    assert quick.intelligence is None
    assert quick.feeds is None

    bad = analyzer_module.quick_analyze(URL, timeout=-1)
    assert set(bad.errors) == {"input"}
    assert analyzer_module.default_analyzer() is analyzer_module._default
