import pytest

from sitez_analyzer.errors import InvalidInput
from sitez_analyzer.urls import normalize_url, registrable_domain_guess, resolve


@pytest.mark.parametrize("raw,expected", [
    ("https://Example.COM", "https://example.com/"),
    ("HTTP://example.com:80/a?b=1#frag", "http://example.com/a?b=1"),
    ("https://example.com:443/", "https://example.com/"),
    ("https://example.com:8443/x", "https://example.com:8443/x"),
    ("  https://sub.example.co.uk/path  ", "https://sub.example.co.uk/path"),
])
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", [
    "",
    "example.com",
    "ftp://example.com/",
    "https://localhost/",
    "https://exa mple.com/",
    "https://-bad-.com/",
    "https://example.com:99999/",
    "javascript:alert(1)",
])
def test_normalize_url_rejects(raw):
    with pytest.raises(InvalidInput) as exc:
        normalize_url(raw)
    assert exc.value.status_code == 400
    assert exc.value.to_dict()["error_code"] == "INVALID_INPUT"


def test_resolve():
    assert resolve("https://example.com/a/b", "../feed.xml") == "https://example.com/feed.xml"
    assert resolve("https://example.com/", "//cdn.example.com/x.js#top") == "https://cdn.example.com/x.js"
    assert resolve("https://example.com/", "mailto:a@b.c") is None
    assert resolve("https://example.com/", "javascript:void(0)") is None
    assert resolve("https://example.com/", "") is None


def test_registrable_domain_guess():
    assert registrable_domain_guess("www.shop.acme.com") == "acme.com"
    assert registrable_domain_guess("acme.com") == "acme.com"
