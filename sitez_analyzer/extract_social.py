from __future__ import annotations

import re
from typing import Iterable, NamedTuple

from .html_utils import ParsedPage
from .models import Document, SocialProfile, SocialRecord
from .urls import hostname_of, registrable_domain_guess


class Platform(NamedTuple):
    name: str
    pattern: re.Pattern
    template: str


def _p(expr: str) -> re.Pattern:
    return re.compile(r"^https?://(?:[a-z0-9-]+\.)*" + expr, re.IGNORECASE)


# Checked in order; a URL belongs to the first platform whose pattern matches.
PLATFORMS: tuple[Platform, ...] = (
    Platform(
        "facebook",
        _p(r"(?:facebook|fb)\.com/(?:pg/)?(?!(?:sharer|share|dialog|plugins|tr|login|home\.php|profile\.php)\b)"
           r"(?P<username>[A-Za-z0-9.\-]{2,})/?"),
        "https://www.facebook.com/{username}",
    ),
    Platform(
        "twitter",
        _p(r"(?:twitter|x)\.com/(?!(?:intent|share|home|hashtag|search|i)\b)@?(?P<username>[A-Za-z0-9_]{1,15})/?"),
        "https://twitter.com/{username}",
    ),
    Platform(
        "instagram",
        _p(r"instagram\.com/(?!(?:p|explore|reel|stories)/)(?P<username>[A-Za-z0-9_.]{1,30})/?"),
        "https://www.instagram.com/{username}",
    ),
    Platform(
        "linkedin",
        _p(r"linkedin\.com/(?P<kind>in|company|school|showcase)/(?P<username>[A-Za-z0-9\-_%.]+)/?"),
        "https://www.linkedin.com/{kind}/{username}",
    ),
    Platform(
        "youtube",
        _p(r"youtube\.com/(?P<path>(?:channel/|c/|user/|@)(?P<username>[A-Za-z0-9_.\-]+))/?"),
        "https://www.youtube.com/{path}",
    ),
    Platform("tiktok", _p(r"tiktok\.com/@(?P<username>[A-Za-z0-9_.]+)/?"), "https://www.tiktok.com/@{username}"),
    Platform(
        "pinterest",
        _p(r"pinterest\.[a-z.]+/(?!(?:pin|search)/)(?P<username>[A-Za-z0-9_]+)/?"),
        "https://www.pinterest.com/{username}",
    ),
    Platform(
        "github",
        _p(r"github\.com/(?!(?:about|features|login|orgs/?$)\b)(?P<username>[A-Za-z0-9-]+)/?"),
        "https://github.com/{username}",
    ),
    Platform(
        "whatsapp",
        _p(r"(?:wa\.me/|(?:api\.)?whatsapp\.com/send/?\?phone=)(?P<username>\+?\d{6,15})"),
        "https://wa.me/{username}",
    ),
    Platform("telegram", _p(r"(?:t|telegram)\.me/(?P<username>[A-Za-z0-9_]{4,})/?"), "https://t.me/{username}"),
)

OTHER_SOCIAL_DOMAINS = {
    "reddit.com", "vimeo.com", "snapchat.com", "threads.net", "discord.gg", "discord.com",
    "medium.com", "mastodon.social", "tumblr.com", "flickr.com", "behance.net", "dribbble.com",
    "soundcloud.com", "twitch.tv", "yelp.com", "bsky.app", "vk.com", "weibo.com",
}


def match_platform(url: str) -> SocialProfile | None:
    """Map ``url`` to a canonical profile, or ``None`` if no platform claims it."""
    for platform in PLATFORMS:
        m = platform.pattern.match(url)
        if not m:
            continue
        parts = {k: v for k, v in m.groupdict().items() if v}
        if "username" not in parts:
            return None
        canonical = platform.template.format(**parts)
        return SocialProfile(platform=platform.name, url=canonical, username=parts["username"], source="")
    return None


def _anchor_urls(page: ParsedPage) -> Iterable[str]:
    for a in page.soup.find_all("a", href=True):
        url = page.absolute(str(a.get("href")))
        if url:
            yield url


def _same_as_urls(page: ParsedPage) -> Iterable[str]:
    for node in page.jsonld:
        same_as = node.get("sameAs")
        values = same_as if isinstance(same_as, list) else [same_as]
        for v in values:
            if isinstance(v, str) and v.strip():
                url = page.absolute(v.strip())
                if url:
                    yield url


def extract(doc: Document) -> SocialRecord:
    page = ParsedPage(doc.html, doc.final_url)
    own_domain = registrable_domain_guess(hostname_of(doc.final_url))
    record = SocialRecord()

    sources = (("anchor", _anchor_urls(page)), ("structured_data", _same_as_urls(page)))
    for source, urls in sources:
        for url in urls:
            profile = match_platform(url)
            if profile is not None:
                if profile.platform not in record.profiles:
                    record.profiles[profile.platform] = profile.model_copy(update={"source": source})
                continue

            domain = registrable_domain_guess(hostname_of(url))
            if domain == own_domain:
                continue
            if (source == "structured_data" or domain in OTHER_SOCIAL_DOMAINS) and url not in record.other:
                record.other.append(url)

    return record
