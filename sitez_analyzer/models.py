from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

Priority = Literal["critical", "high", "medium", "low"]
RiskLevel = Literal["clean", "low", "medium", "high", "unknown"]

PRIORITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# Options for a fast pass: no external intelligence, no feeds, longer cache.
QUICK_PROFILE: dict[str, Any] = {
    "include_intelligence": False,
    "include_feeds": False,
    "cache_duration": 12 * 3600,
    "timeout": 15,
}


class AnalysisOptions(BaseModel):
    include_metadata: bool = True
    include_social: bool = True
    include_contact: bool = True
    include_feeds: bool = True
    include_intelligence: bool = True

    # Intelligence capabilities, only consulted when include_intelligence is on.
    include_ssl: bool = True
    include_reputation: bool = True
    include_technology: bool = True
    include_performance: bool = True
    include_headers: bool = True

    use_cache: bool = True
    cache_duration: int = Field(6 * 3600, ge=0)
    timeout: float = Field(30, gt=0, le=120)
    user_agent: str | None = None

    @classmethod
    def quick(cls, **overrides: Any) -> "AnalysisOptions":
        return cls(**{**QUICK_PROFILE, **overrides})

    def enabled_categories(self) -> list[str]:
        out = []
        if self.include_metadata:
            out.append("metadata")
        if self.include_social:
            out.append("social")
        if self.include_contact:
            out.append("contact")
        if self.include_intelligence and self.capabilities():
            out.append("intelligence")
        if self.include_feeds:
            out.append("feeds")
        return out

    def capabilities(self) -> set[str]:
        if not self.include_intelligence:
            return set()
        caps = set()
        if self.include_ssl:
            caps.add("ssl")
        if self.include_reputation:
            caps.add("reputation")
        if self.include_technology:
            caps.add("technology")
        if self.include_performance:
            caps.add("performance")
        if self.include_headers:
            caps.add("headers")
        return caps

    def canonical(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class AnalysisRequest(BaseModel):
    url: str = Field(..., min_length=1)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Document(BaseModel):
    """The single fetched page every extractor reads."""

    url: str
    final_url: str
    status_code: int
    content_type: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    redirect_chain: list[str] = Field(default_factory=list)
    html: str = ""


class MetadataRecord(BaseModel):
    title: str = ""
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    canonical: str | None = None
    robots: str | None = None
    robots_directives: list[str] = Field(default_factory=list)
    language: str | None = None
    charset: str | None = None
    viewport: str | None = None
    favicon: str | None = None
    image: str | None = None
    open_graph: dict[str, str] = Field(default_factory=dict)
    twitter_card: dict[str, str] = Field(default_factory=dict)
    structured_data: list[str] = Field(default_factory=list)
    headings: dict[str, int] = Field(default_factory=dict)
    feed_links: list[str] = Field(default_factory=list)
    fallbacks_used: list[str] = Field(default_factory=list)


class PhoneNumber(BaseModel):
    raw: str
    formatted: str
    type: Literal["us", "international"] = "us"
    toll_free: bool = False
    source: str


class PostalAddress(BaseModel):
    value: str
    source: str


class ContactForm(BaseModel):
    action: str | None = None
    method: str = "get"
    fields: list[str] = Field(default_factory=list)
    has_validation: bool = False
    has_captcha: bool = False
    form_score: int = 0


class BusinessHours(BaseModel):
    day: str
    opens: str | None = None
    closes: str | None = None
    closed: bool = False


class GeoLocation(BaseModel):
    latitude: float | None = None
    longitude: float | None = None
    source: str | None = None
    map_embeds: list[str] = Field(default_factory=list)


class ContactRecord(BaseModel):
    emails: list[str] = Field(default_factory=list)
    email_sources: dict[str, str] = Field(default_factory=dict)
    phones: list[PhoneNumber] = Field(default_factory=list)
    addresses: list[PostalAddress] = Field(default_factory=list)
    forms: list[ContactForm] = Field(default_factory=list)
    business_hours: list[BusinessHours] = Field(default_factory=list)
    location: GeoLocation | None = None


class SocialProfile(BaseModel):
    platform: str
    url: str
    username: str | None = None
    source: str


class SocialRecord(BaseModel):
    profiles: dict[str, SocialProfile] = Field(default_factory=dict)
    other: list[str] = Field(default_factory=list)


class FeedEntry(BaseModel):
    url: str
    type: str
    title: str | None = None
    source: Literal["link_tag", "url_pattern"]


class FeedRecord(BaseModel):
    urls: list[str] = Field(default_factory=list)
    entries: list[FeedEntry] = Field(default_factory=list)


class SslRecord(BaseModel):
    provider: str
    score: int | None = None
    grade: str | None = None
    valid: bool = False
    issuer: str | None = None
    subject: str | None = None
    expires_at: str | None = None
    days_to_expiry: int | None = None
    key_type: str | None = None
    key_bits: int | None = None
    protocol: str | None = None
    handshake_ms: int | None = None
    vulnerabilities: list[str] = Field(default_factory=list)
    error: str | None = None


class ReputationRecord(BaseModel):
    providers: list[str] = Field(default_factory=list)
    threat_score: int | None = None
    risk_level: RiskLevel = "unknown"
    security_score: int | None = None
    reputation_score: int | None = None
    threat_categories: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class Technology(BaseModel):
    name: str
    categories: list[str] = Field(default_factory=list)
    version: str | None = None


class TechnologyRecord(BaseModel):
    provider: str | None = None
    technologies: list[Technology] = Field(default_factory=list)
    categories: dict[str, list[str]] = Field(default_factory=dict)
    error: str | None = None


class HeaderCheck(BaseModel):
    value: str
    level: Literal["excellent", "good", "fair", "poor"]
    score: int


class SecurityHeadersRecord(BaseModel):
    provider: str = "headers"
    score: int | None = None
    present: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    missing_critical: list[str] = Field(default_factory=list)
    checks: dict[str, HeaderCheck] = Field(default_factory=dict)
    error: str | None = None


class PerformanceRecord(BaseModel):
    provider: str = "pagespeed"
    score: int | None = None
    mobile_score: int | None = None
    desktop_score: int | None = None
    metrics: dict[str, dict[str, Any]] = Field(default_factory=dict)
    opportunities: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None


class IntelligenceRecord(BaseModel):
    ssl: SslRecord | None = None
    reputation: ReputationRecord | None = None
    technology: TechnologyRecord | None = None
    performance: PerformanceRecord | None = None
    headers: SecurityHeadersRecord | None = None
    sub_scores: dict[str, int] = Field(default_factory=dict)
    score: int | None = None


class ScoreComponent(BaseModel):
    category: str
    weight: float
    raw_score: int
    grade: str
    status: str
    weighted_contribution: float


class Recommendation(BaseModel):
    category: str
    priority: Priority
    title: str
    description: str = ""


class GradeInfo(BaseModel):
    grade: str
    min_score: int
    description: str
    color: str


class AnalysisSummary(BaseModel):
    components_analyzed: list[str] = Field(default_factory=list)
    completeness: int = 0
    total_recommendations: int = 0
    high_priority_recommendations: int = 0
    errors_count: int = 0
    grade_description: str = ""
    strengths: list[dict[str, Any]] = Field(default_factory=list)
    weaknesses: list[dict[str, Any]] = Field(default_factory=list)
    improvement_potential: int = 0


class AnalysisResult(BaseModel):
    url: str
    final_url: str | None = None

    metadata: MetadataRecord | None = None
    social: SocialRecord | None = None
    contact: ContactRecord | None = None
    feeds: FeedRecord | None = None
    intelligence: IntelligenceRecord | None = None

    component_scores: dict[str, int] = Field(default_factory=dict)
    score_components: list[ScoreComponent] = Field(default_factory=list)
    overall_score: int = 0
    overall_grade: str = "F"
    grade_info: GradeInfo | None = None
    recommendations: list[Recommendation] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)

    analysis_time_ms: int = 0
    timings_ms: dict[str, int] = Field(default_factory=dict)
    analyzed_at: str = ""
    stale: bool = False


class ExtractionOutcome(BaseModel):
    """Either a category record or the reason it could not be produced."""

    category: str
    record: Any = None
    error: str | None = None
    failure: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None


class CacheEntry(BaseModel):
    key: str
    payload: str
    expires_at: float
