from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 SiteZAnalyzer/1.0"
)

CATEGORIES = ("metadata", "social", "contact", "intelligence", "feeds")

DEFAULT_CATEGORY_WEIGHTS: dict[str, float] = {
    "metadata": 0.30,
    "social": 0.20,
    "contact": 0.15,
    "intelligence": 0.25,
    "feeds": 0.10,
}

# Ordered highest first; a score earns the first grade whose minimum it reaches.
DEFAULT_GRADE_THRESHOLDS: list[tuple[str, int]] = [
    ("A+", 97), ("A", 93), ("A-", 90),
    ("B+", 87), ("B", 83), ("B-", 80),
    ("C+", 77), ("C", 73), ("C-", 70),
    ("D+", 67), ("D", 63), ("D-", 60),
    ("F", 0),
]

GRADE_DESCRIPTORS: dict[str, tuple[str, str]] = {
    "A+": ("Exceptional", "#00C851"),
    "A": ("Excellent", "#2BBBAD"),
    "A-": ("Very Good", "#4285F4"),
    "B+": ("Good", "#33B679"),
    "B": ("Above Average", "#FFA726"),
    "B-": ("Satisfactory", "#FB8C00"),
    "C+": ("Fair", "#FF7043"),
    "C": ("Below Average", "#EF5350"),
    "C-": ("Poor", "#E53935"),
    "D+": ("Very Poor", "#D32F2F"),
    "D": ("Critical", "#B71C1C"),
    "D-": ("Failing", "#9E9E9E"),
    "F": ("Unacceptable", "#424242"),
}

# Sub-score weights inside the intelligence category.
DEFAULT_INTELLIGENCE_WEIGHTS: dict[str, float] = {
    "ssl": 0.25,
    "security": 0.30,
    "performance": 0.25,
    "reputation": 0.20,
}


class MetadataPoints(BaseModel):
    title_ideal: tuple[int, int] = (30, 60)
    title_ok: tuple[int, int] = (20, 70)
    title_points: tuple[int, int, int] = (25, 20, 15)
    description_ideal: tuple[int, int] = (120, 160)
    description_ok: tuple[int, int] = (80, 200)
    description_points: tuple[int, int, int] = (25, 20, 15)
    open_graph: dict[str, int] = Field(
        default_factory=lambda: {"title": 5, "description": 5, "image": 5, "url": 3, "type": 2}
    )
    twitter: dict[str, int] = Field(
        default_factory=lambda: {"card": 5, "title": 4, "description": 3, "image": 3}
    )
    structured_data_each: int = 2
    structured_data_max: int = 10
    language: int = 5


class ContactPoints(BaseModel):
    email_each: int = 15
    email_max: int = 30
    phone_each: int = 12
    phone_max: int = 25
    address_each: int = 10
    address_max: int = 20
    form_each: int = 15
    form_max: int = 15
    hours: int = 10


class ProviderLimit(BaseModel):
    requests: int
    window_s: int
    timeout_s: float


DEFAULT_PROVIDER_LIMITS: dict[str, ProviderLimit] = {
    "ssl_labs": ProviderLimit(requests=25, window_s=3600, timeout_s=30),
    "virustotal": ProviderLimit(requests=4, window_s=60, timeout_s=20),
    "urlscan": ProviderLimit(requests=100, window_s=86400, timeout_s=15),
    "builtwith": ProviderLimit(requests=200, window_s=30 * 86400, timeout_s=15),
    "pagespeed": ProviderLimit(requests=25000, window_s=86400, timeout_s=30),
}


class Settings(BaseModel):
    """Process-wide configuration handed to the analyzer at construction time."""

    user_agent: str = DEFAULT_USER_AGENT
    max_workers: int = Field(8, ge=1, le=64)
    max_html_kb: int = Field(2048, ge=1)
    max_redirects: int = Field(5, ge=0, le=20)
    single_flight: bool = True
    redis_url: str | None = None
    provider_cache_ttl: int = 24 * 3600
    stale_ttl: int = 7 * 24 * 3600

    ssl_labs_enabled: bool = True
    virustotal_api_key: str | None = None
    urlscan_api_key: str | None = None
    builtwith_api_key: str | None = None
    pagespeed_api_key: str | None = None

    fallback_title: str | None = None
    fallback_description: str | None = None
    fallback_image: str | None = None

    category_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS))
    intelligence_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_INTELLIGENCE_WEIGHTS))
    grade_thresholds: list[tuple[str, int]] = Field(default_factory=lambda: list(DEFAULT_GRADE_THRESHOLDS))
    metadata_points: MetadataPoints = Field(default_factory=MetadataPoints)
    contact_points: ContactPoints = Field(default_factory=ContactPoints)
    provider_limits: dict[str, ProviderLimit] = Field(
        default_factory=lambda: {k: v.model_copy() for k, v in DEFAULT_PROVIDER_LIMITS.items()}
    )

    @classmethod
    def from_env(cls) -> "Settings":
        def _opt(name: str) -> str | None:
            v = os.getenv(name, "").strip()
            return v or None

        def _int(name: str, default: int) -> int:
            try:
                return int(os.getenv(name, str(default)))
            except ValueError:
                return default

        return cls(
            user_agent=_opt("SITEZ_USER_AGENT") or DEFAULT_USER_AGENT,
            max_workers=max(1, _int("SITEZ_MAX_WORKERS", 8)),
            max_html_kb=max(1, _int("SITEZ_MAX_HTML_KB", 2048)),
            single_flight=os.getenv("SITEZ_SINGLE_FLIGHT", "1") != "0",
            redis_url=_opt("SITEZ_REDIS_URL"),
            provider_cache_ttl=max(0, _int("SITEZ_PROVIDER_CACHE_TTL", 24 * 3600)),
            stale_ttl=max(0, _int("SITEZ_STALE_TTL", 7 * 24 * 3600)),
            ssl_labs_enabled=os.getenv("SITEZ_SSL_LABS_ENABLED", "1") != "0",
            virustotal_api_key=_opt("SITEZ_VIRUSTOTAL_API_KEY"),
            urlscan_api_key=_opt("SITEZ_URLSCAN_API_KEY"),
            builtwith_api_key=_opt("SITEZ_BUILTWITH_API_KEY"),
            pagespeed_api_key=_opt("SITEZ_PAGESPEED_API_KEY"),
            fallback_title=_opt("SITEZ_FALLBACK_TITLE"),
            fallback_description=_opt("SITEZ_FALLBACK_DESCRIPTION"),
            fallback_image=_opt("SITEZ_FALLBACK_IMAGE"),
        )
