import sys
import pathlib

import httpx
import pytest

# Ensure project root is on sys.path so 'import sitez_analyzer' works when pytest
# runs from different working directories or when running individual tests.
_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from sitez_analyzer.analyzer import Analyzer
from sitez_analyzer.cache import MemoryCacheStore, SingleFlight
from sitez_analyzer.config import Settings
from sitez_analyzer.fetcher import Fetcher
from sitez_analyzer.intelligence import IntelligenceGateway
from sitez_analyzer.models import Document, SslRecord


SAMPLE_HTML = """<!doctype html>
<html lang="en">
<head>
  <title>Home</title>
  <link rel="alternate" type="application/rss+xml" href="/feed.xml">
</head>
<body>
  <a href="mailto:info@example.com">Email us</a>
  <a href="tel:+14155551234">Call us</a>
</body>
</html>
"""


RICH_HTML = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Acme Widgets - Handmade widgets since 1999</title>
  <meta name="description" content="Acme builds durable, handmade widgets for homes and workshops. Browse the catalog, read our guides and get in touch with the team for custom orders.">
  <meta name="keywords" content="widgets, handmade, acme">
  <meta name="robots" content="index, follow">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <meta property="og:title" content="Acme Widgets">
  <meta property="og:description" content="Handmade widgets">
  <meta property="og:image" content="/img/og.png">
  <meta property="og:url" content="https://acme.test/">
  <meta property="og:type" content="website">
  <meta name="twitter:card" content="summary_large_image">
  <meta name="twitter:title" content="Acme Widgets">
  <link rel="canonical" href="https://acme.test/">
  <link rel="icon" href="/favicon.ico">
  <link rel="alternate" type="application/atom+xml" href="/atom.xml" title="Acme news">
  <script type="application/ld+json">
  {"@context": "https://schema.org", "@type": "Organization", "name": "Acme",
   "email": "sales@acme.test", "telephone": "+1 (212) 555-0199",
   "address": {"@type": "PostalAddress", "streetAddress": "12 Main Street",
               "addressLocality": "Springfield", "addressRegion": "IL", "postalCode": "62701"},
   "sameAs": ["https://twitter.com/acme", "https://www.youtube.com/@acme"]}
  </script>
</head>
<body>
  <h1>Acme Widgets</h1>
  <a href="https://www.facebook.com/acme">Facebook</a>
  <a href="https://www.linkedin.com/company/acme-widgets/">LinkedIn</a>
  <a href="/blog/feed/">Blog feed</a>
  <p>Write to support [at] acme [dot] test or call (800) 555-0100.</p>
  <p>Monday: 9:00 AM - 5:00 PM Sunday: Closed</p>
  <form action="/contact" method="post">
    <input type="text" name="name" required>
    <input type="email" name="email" required>
    <textarea name="message"></textarea>
    <div class="g-recaptcha"></div>
    <button type="submit">Send</button>
  </form>
</body>
</html>
"""


class FakeRedis:
    """Just enough of redis.Redis for the cache store."""

    def __init__(self):
        self.store = {}
        self.setex_calls = []

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.setex_calls.append((key, ttl, value))
        self.store[key] = value.encode("utf-8")

    def delete(self, key):
        self.store.pop(key, None)


class FakeTlsProbe:
    name = "tls"

    def __init__(self, record=None):
        self.calls = 0
        self.record = record or SslRecord(
            provider="tls", score=100, valid=True, issuer="CN=Test CA", days_to_expiry=200,
            protocol="TLSv1.3", handshake_ms=40,
        )

    def fetch(self, host, timeout, port=443):
        self.calls += 1
        return self.record


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_doc(html, url="https://example.com/", headers=None):
    return Document(url=url, final_url=url, status_code=200, content_type="text/html", headers=headers or {}, html=html)


def site_handler(pages, providers=None):
    """Serve ``pages`` (url -> html) and ``providers`` (host -> callable(request)), 404 otherwise."""
    providers = providers or {}

    def handler(request):
        url = str(request.url)
        if url in pages:
            return httpx.Response(200, html=pages[url])
        fn = providers.get(request.url.host)
        if fn is not None:
            return fn(request)
        return httpx.Response(404, text="not found")

    return handler


def build_analyzer(handler, settings=None, cache=None, tls_probe=None):
    settings = settings or Settings(ssl_labs_enabled=False)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    cache = cache if cache is not None else MemoryCacheStore()
    gateway = IntelligenceGateway(settings, client=client, cache=cache, tls_probe=tls_probe or FakeTlsProbe())
    return Analyzer(
        settings=settings,
        cache=cache,
        fetcher=Fetcher(client, max_html_kb=settings.max_html_kb),
        gateway=gateway,
        single_flight=SingleFlight(settings.single_flight),
    )


@pytest.fixture
def settings():
    return Settings(ssl_labs_enabled=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()
