"""Category scoring, weighted aggregation, grades and recommendations.

Every number used here comes from ``Settings`` so deployments can tune the
tables without code changes. Categories whose record carries no usable data
are left out of the weighted mean entirely, and the remaining weights are
renormalized to sum to 1.
"""
from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, Field

from .config import GRADE_DESCRIPTORS, ContactPoints, MetadataPoints, Settings
from .models import (
    PRIORITY_ORDER,
    ContactRecord,
    FeedRecord,
    GradeInfo,
    IntelligenceRecord,
    MetadataRecord,
    Recommendation,
    ScoreComponent,
    SocialRecord,
)

MAJOR_SOCIAL_PLATFORMS = ("facebook", "twitter", "instagram", "linkedin", "youtube")

# A category's recommendations fire once its score drops below this.
RECOMMENDATION_THRESHOLDS: dict[str, int] = {
    "metadata": 90,
    "social": 80,
    "contact": 80,
    "feeds": 50,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float) -> int:
    return max(0, min(100, _round_half_up(value)))


# -- grades -------------------------------------------------------------------

def grade_for(score: float, thresholds: list[tuple[str, int]]) -> str:
    ordered = sorted(thresholds, key=lambda t: t[1], reverse=True)
    for grade, minimum in ordered:
        if score >= minimum:
            return grade
    return ordered[-1][0]


def grade_info(grade: str, thresholds: list[tuple[str, int]]) -> GradeInfo:
    minimum = dict(thresholds).get(grade, 0)
    description, color = GRADE_DESCRIPTORS.get(grade, ("Unknown", "#666666"))
    return GradeInfo(grade=grade, min_score=minimum, description=description, color=color)


def category_status(score: int) -> str:
    if score >= 90:
        return "Excellent - No immediate action needed"
    if score >= 80:
        return "Good - Minor improvements possible"
    if score >= 70:
        return "Fair - Some improvements recommended"
    if score >= 60:
        return "Poor - Significant improvements needed"
    return "Critical - Immediate attention required"


# -- per-category point allocation ----------------------------------------------

def _length_points(length: int, ideal: tuple[int, int], ok: tuple[int, int], points: tuple[int, int, int]) -> int:
    if length <= 0:
        return 0
    if ideal[0] <= length <= ideal[1]:
        return points[0]
    if ok[0] <= length <= ok[1]:
        return points[1]
    return points[2]


def score_metadata(rec: MetadataRecord, pts: MetadataPoints) -> int:
    score = _length_points(len(rec.title), pts.title_ideal, pts.title_ok, pts.title_points)
    score += _length_points(len(rec.description), pts.description_ideal, pts.description_ok, pts.description_points)
    score += sum(v for k, v in pts.open_graph.items() if rec.open_graph.get(k))
    score += sum(v for k, v in pts.twitter.items() if rec.twitter_card.get(k))
    score += min(pts.structured_data_max, len(rec.structured_data) * pts.structured_data_each)
    if rec.language:
        score += pts.language
    return _clamp(score)


def score_contact(rec: ContactRecord, pts: ContactPoints) -> int:
    score = min(pts.email_max, len(rec.emails) * pts.email_each)
    score += min(pts.phone_max, len(rec.phones) * pts.phone_each)
    score += min(pts.address_max, len(rec.addresses) * pts.address_each)
    score += min(pts.form_max, len(rec.forms) * pts.form_each)
    if rec.business_hours:
        score += pts.hours
    return _clamp(score)


def score_social(rec: SocialRecord) -> int:
    major = sum(1 for p in rec.profiles if p in MAJOR_SOCIAL_PLATFORMS)
    minor = len(rec.profiles) - major
    score = major * 20 + minor * 10 + min(10, len(rec.other) * 5)
    if rec.profiles and all(p.username for p in rec.profiles.values()):
        score += 10
    return _clamp(score)


def score_feeds(rec: FeedRecord) -> int:
    count = len(rec.entries)
    if count == 0:
        return 0
    score = 20 if count == 1 else 30 if count == 2 else 40
    if any(e.source == "link_tag" for e in rec.entries):
        score += 40
    if any(e.type in ("RSS", "Atom", "JSON Feed") for e in rec.entries):
        score += 20
    return _clamp(score)


def has_data(category: str, record: Any) -> bool:
    """False when a record carries nothing worth scoring."""
    if record is None:
        return False
    if category == "metadata":
        r: MetadataRecord = record
        return bool(r.title or r.description or r.open_graph or r.twitter_card or r.structured_data or r.language)
    if category == "contact":
        c: ContactRecord = record
        return bool(c.emails or c.phones or c.addresses or c.forms or c.business_hours)
    if category == "social":
        s: SocialRecord = record
        return bool(s.profiles or s.other)
    if category == "feeds":
        return bool(record.entries)
    if category == "intelligence":
        return record.score is not None
    return False


def score_category(category: str, record: Any, settings: Settings) -> int:
    if category == "metadata":
        return score_metadata(record, settings.metadata_points)
    if category == "contact":
        return score_contact(record, settings.contact_points)
    if category == "social":
        return score_social(record)
    if category == "feeds":
        return score_feeds(record)
    if category == "intelligence":
        return _clamp(record.score or 0)
    raise ValueError(f"Unknown category: {category}")


# -- aggregation ---------------------------------------------------------------

def renormalize(weights: dict[str, float], present: list[str]) -> dict[str, float]:
    active = {c: max(0.0, weights.get(c, 0.0)) for c in present}
    total = sum(active.values())
    if total <= 0:
        return {c: 0.0 for c in active}
    return {c: w / total for c, w in active.items()}


class ScoreCard(BaseModel):
    component_scores: dict[str, int] = Field(default_factory=dict)
    components: list[ScoreComponent] = Field(default_factory=list)
    weights: dict[str, float] = Field(default_factory=dict)
    overall_score: int = 0
    overall_grade: str = "F"


def score_records(records: dict[str, Any], settings: Settings) -> ScoreCard:
    """Score every category that has data and take the renormalized weighted mean."""
    scores: dict[str, int] = {}
    for category, record in records.items():
        if has_data(category, record):
            scores[category] = score_category(category, record, settings)

    # zero-weight categories are reported but cannot move the mean
    weighted = [c for c in scores if settings.category_weights.get(c, 0.0) > 0]
    weights = renormalize(settings.category_weights, weighted)

    overall = 0
    if weights and sum(weights.values()) > 0:
        overall = _clamp(sum(scores[c] * w for c, w in weights.items()))

    thresholds = settings.grade_thresholds
    components = [
        ScoreComponent(
            category=c,
            weight=round(weights.get(c, 0.0), 6),
            raw_score=s,
            grade=grade_for(s, thresholds),
            status=category_status(s),
            weighted_contribution=round(s * weights.get(c, 0.0), 2),
        )
        for c, s in scores.items()
    ]
    return ScoreCard(
        component_scores=scores,
        components=components,
        weights=weights,
        overall_score=overall,
        overall_grade=grade_for(overall, thresholds),
    )


def strengths_and_weaknesses(scores: dict[str, int]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    strengths = [{"category": c, "score": s} for c, s in scores.items() if s >= 85]
    strengths.sort(key=lambda x: x["score"], reverse=True)
    weaknesses = []
    for c, s in scores.items():
        if s < 70:
            severity = "critical" if s < 40 else "high" if s < 60 else "medium"
            weaknesses.append({"category": c, "score": s, "severity": severity})
    weaknesses.sort(key=lambda x: x["score"])
    return strengths, weaknesses


def improvement_potential(scores: dict[str, int]) -> int:
    if not scores:
        return 0
    return _round_half_up(sum(max(0, 100 - s) for s in scores.values()) / len(scores))


# -- recommendations -------------------------------------------------------------

def _rec(category: str, priority: str, title: str, description: str = "") -> Recommendation:
    return Recommendation(category=category, priority=priority, title=title, description=description)


def _metadata_recs(rec: MetadataRecord, pts: MetadataPoints) -> list[Recommendation]:
    out = []
    if not rec.title:
        out.append(_rec("metadata", "high", "Add a page title", "The page has no <title> element."))
    elif not pts.title_ok[0] <= len(rec.title) <= pts.title_ok[1]:
        out.append(_rec("metadata", "medium", "Adjust title length",
                        f"Titles between {pts.title_ideal[0]} and {pts.title_ideal[1]} characters display best; "
                        f"this one has {len(rec.title)}."))
    if not rec.description:
        out.append(_rec("metadata", "high", "Add a meta description",
                        "Search engines and link previews fall back to arbitrary page text."))
    elif not pts.description_ok[0] <= len(rec.description) <= pts.description_ok[1]:
        out.append(_rec("metadata", "medium", "Adjust meta description length",
                        f"Aim for {pts.description_ideal[0]}-{pts.description_ideal[1]} characters; "
                        f"this one has {len(rec.description)}."))
    if "noindex" in rec.robots_directives:
        out.append(_rec("metadata", "high", "Page is excluded from search indexing",
                        "The robots meta tag contains noindex."))
    if not rec.open_graph:
        out.append(_rec("metadata", "medium", "Add Open Graph tags",
                        "og:title, og:description and og:image control how shared links render."))
    if not rec.twitter_card:
        out.append(_rec("metadata", "low", "Add Twitter Card tags"))
    if not rec.structured_data:
        out.append(_rec("metadata", "low", "Add structured data", "Describe the organization or page with JSON-LD."))
    if not rec.canonical:
        out.append(_rec("metadata", "low", "Declare a canonical URL"))
    if not rec.language:
        out.append(_rec("metadata", "low", "Declare the page language", "Set the lang attribute on <html>."))
    return out


def _contact_recs(rec: ContactRecord) -> list[Recommendation]:
    out = []
    if not rec.emails:
        out.append(_rec("contact", "high", "Publish a contact email address"))
    if not rec.phones:
        out.append(_rec("contact", "medium", "Publish a phone number"))
    if not rec.forms:
        out.append(_rec("contact", "medium", "Add a contact form"))
    if not rec.addresses:
        out.append(_rec("contact", "low", "Publish a physical address"))
    return out


def _social_recs(rec: SocialRecord) -> list[Recommendation]:
    if not rec.profiles:
        return [_rec("social", "medium", "Link your social media profiles",
                     "No profiles on major platforms were found in links or structured data.")]
    missing = [p for p in MAJOR_SOCIAL_PLATFORMS if p not in rec.profiles]
    if len(rec.profiles) < 3 and missing:
        return [_rec("social", "low", "Expand your social presence", "Not linked: " + ", ".join(missing) + ".")]
    return []


def _intelligence_recs(rec: IntelligenceRecord) -> list[Recommendation]:
    out = []
    ssl = rec.ssl
    if ssl is not None and ssl.error is None:
        if not ssl.valid:
            out.append(_rec("intelligence", "critical", "Fix the site's TLS certificate",
                            "; ".join(ssl.vulnerabilities) or "No valid certificate was presented."))
        elif ssl.score is not None and ssl.score < 70:
            out.append(_rec("intelligence", "high", "Improve SSL/TLS configuration",
                            f"SSL score is {ssl.score}/100."))
        if ssl.valid and ssl.vulnerabilities:
            out.append(_rec("intelligence", "high", "Address TLS vulnerabilities", ", ".join(ssl.vulnerabilities)))
    rep = rec.reputation
    if rep is not None and rep.error is None and rep.threat_score is not None and rep.threat_score > 25:
        out.append(_rec("intelligence", "critical", "Investigate security threats",
                        f"Threat score {rep.threat_score}/100 ({rep.risk_level} risk)."))
    headers = rec.headers
    if headers is not None and headers.error is None:
        if headers.missing_critical:
            out.append(_rec("intelligence", "medium", "Add missing security headers",
                            "Not sent: " + ", ".join(headers.missing_critical) + "."))
        weak = [name for name, check in headers.checks.items() if check.level == "poor"]
        if weak:
            out.append(_rec("intelligence", "low", "Tighten security header values",
                            "Weak configuration: " + ", ".join(weak) + "."))
    perf = rec.performance
    if perf is not None and perf.error is None and perf.score is not None and perf.score < 70:
        detail = f"Performance score is {perf.score}/100."
        if perf.opportunities:
            detail += " Top opportunity: " + str(perf.opportunities[0].get("title") or perf.opportunities[0]["id"])
        out.append(_rec("intelligence", "high", "Improve page performance", detail))
    return out


def build_recommendations(records: dict[str, Any], scores: dict[str, int], settings: Settings) -> list[Recommendation]:
    """Collect per-category recommendations, ordered critical > high > medium > low.

    Categories that produced no data still contribute (their score counts as
    zero here); categories that were not analyzed at all do not.
    """
    out: list[Recommendation] = []
    for category, record in records.items():
        if record is None:
            continue
        score = scores.get(category, 0)
        threshold = RECOMMENDATION_THRESHOLDS.get(category)
        if threshold is not None and score >= threshold:
            continue
        if category == "metadata":
            out.extend(_metadata_recs(record, settings.metadata_points))
        elif category == "contact":
            out.extend(_contact_recs(record))
        elif category == "social":
            out.extend(_social_recs(record))
        elif category == "feeds" and not record.entries:
            out.append(_rec("feeds", "low", "Consider adding RSS/Atom feeds for content syndication"))
        elif category == "intelligence":
            out.extend(_intelligence_recs(record))
    out.sort(key=lambda r: PRIORITY_ORDER[r.priority])
    return out
