import itertools

import pytest

from sitez_analyzer.config import CATEGORIES, DEFAULT_CATEGORY_WEIGHTS, DEFAULT_GRADE_THRESHOLDS, Settings
from sitez_analyzer.models import (
    PRIORITY_ORDER,
    ContactForm,
    ContactRecord,
    FeedEntry,
    FeedRecord,
    IntelligenceRecord,
    MetadataRecord,
    PhoneNumber,
    PostalAddress,
    ReputationRecord,
    BusinessHours,
    SocialProfile,
    SocialRecord,
)
from sitez_analyzer.providers import grade_security_headers
from sitez_analyzer.scoring import (
    build_recommendations,
    category_status,
    grade_for,
    grade_info,
    improvement_potential,
    renormalize,
    score_contact,
    score_feeds,
    score_metadata,
    score_records,
    score_social,
    strengths_and_weaknesses,
)

POINTS = Settings().metadata_points


def _full_metadata(**overrides):
    values = dict(
        title="t" * 45,
        description="d" * 140,
        open_graph={"title": "a", "description": "b", "image": "c", "url": "d", "type": "e"},
        twitter_card={"card": "a", "title": "b", "description": "c", "image": "d"},
        structured_data=["A", "B", "C", "D", "E", "F"],
        language="en",
    )
    values.update(overrides)
    return MetadataRecord(**values)


def _phone(n):
    return PhoneNumber(raw=n, formatted=n, source="tel")


@pytest.mark.parametrize("score,grade", [
    (100, "A+"), (97, "A+"), (96, "A"), (93, "A"), (90, "A-"), (89, "B+"), (83, "B"),
    (80, "B-"), (77, "C+"), (70, "C-"), (67, "D+"), (60, "D-"), (59, "F"), (0, "F"),
])
def test_grade_for(score, grade):
    assert grade_for(score, DEFAULT_GRADE_THRESHOLDS) == grade


def test_every_score_lands_in_its_band():
    mins = sorted(m for _, m in DEFAULT_GRADE_THRESHOLDS)
    table = dict(DEFAULT_GRADE_THRESHOLDS)
    for score in range(101):
        grade = grade_for(score, DEFAULT_GRADE_THRESHOLDS)
        lower = table[grade]
        upper = next((m for m in mins if m > lower), 101)
        assert lower <= score < upper


def test_grade_info_and_status():
    info = grade_info("B", DEFAULT_GRADE_THRESHOLDS)
    assert (info.min_score, info.description) == (83, "Above Average")
    assert category_status(95).startswith("Excellent")
    assert category_status(80).startswith("Good")
    assert category_status(70).startswith("Fair")
    assert category_status(60).startswith("Poor")
    assert category_status(59).startswith("Critical")


def test_renormalized_weights_sum_to_one_for_every_subset():
    for size in range(1, len(CATEGORIES) + 1):
        for subset in itertools.combinations(CATEGORIES, size):
            weights = renormalize(DEFAULT_CATEGORY_WEIGHTS, list(subset))
            assert set(weights) == set(subset)
            assert sum(weights.values()) == pytest.approx(1.0)


def test_metadata_points():
    assert score_metadata(_full_metadata(), POINTS) == 100
    assert score_metadata(MetadataRecord(title="t" * 25), POINTS) == 20
    assert score_metadata(MetadataRecord(title="t" * 10), POINTS) == 15
    assert score_metadata(MetadataRecord(description="d" * 90), POINTS) == 20
    assert score_metadata(MetadataRecord(description="d" * 300, language="fr"), POINTS) == 20
    assert score_metadata(MetadataRecord(), POINTS) == 0


def test_contact_points_are_capped_per_field():
    rec = ContactRecord(
        emails=["a@x.io", "b@x.io", "c@x.io"],
        phones=[_phone("4155551234")],
        forms=[ContactForm(fields=["email"])],
        business_hours=[BusinessHours(day="Monday", opens="9", closes="5")],
    )
    assert score_contact(rec, Settings().contact_points) == 30 + 12 + 15 + 10


def test_social_and_feed_points():
    social = SocialRecord(
        profiles={
            p: SocialProfile(platform=p, url=f"https://{p}.com/acme", username="acme", source="anchor")
            for p in ("facebook", "twitter", "github")
        },
        other=["https://vimeo.com/acme"],
    )
    assert score_social(social) == 40 + 10 + 5 + 10

    one = FeedRecord(entries=[FeedEntry(url="https://x.io/feed", type="RSS", source="link_tag")])
    assert score_feeds(one) == 80
    guessed = FeedRecord(entries=[FeedEntry(url="https://x.io/news.xml", type="XML Feed", source="url_pattern")])
    assert score_feeds(guessed) == 20
    assert score_feeds(FeedRecord()) == 0


def test_overall_uses_only_present_categories():
    settings = Settings()
    records = {
        "metadata": _full_metadata(),
        "contact": ContactRecord(
            emails=["a@x.io", "b@x.io", "c@x.io"],
            phones=[_phone("4155551234")],
            forms=[ContactForm(fields=["email"])],
            business_hours=[BusinessHours(day="Monday", closed=True)],
        ),
        "feeds": FeedRecord(entries=[FeedEntry(url="https://x.io/feed", type="RSS", source="link_tag")]),
        "social": SocialRecord(),
    }
    card = score_records(records, settings)

    assert card.component_scores == {"metadata": 100, "contact": 67, "feeds": 80}
    assert "social" not in card.weights
    assert sum(card.weights.values()) == pytest.approx(1.0)
    # (100*.30 + 67*.15 + 80*.10) / .55
    assert card.overall_score == 87
    assert card.overall_grade == "B+"
    assert [c.category for c in card.components] == ["metadata", "contact", "feeds"]
    assert sum(c.weight for c in card.components) == pytest.approx(1.0)


def test_no_data_means_zero_and_f():
    card = score_records({"metadata": MetadataRecord(), "feeds": FeedRecord()}, Settings())
    assert card.component_scores == {}
    assert card.overall_score == 0
    assert card.overall_grade == "F"


def test_zero_weight_category_is_reported_but_not_weighted():
    settings = Settings(category_weights={**DEFAULT_CATEGORY_WEIGHTS, "feeds": 0.0})
    records = {
        "metadata": _full_metadata(),
        "feeds": FeedRecord(entries=[FeedEntry(url="https://x.io/feed", type="RSS", source="link_tag")]),
    }
    card = score_records(records, settings)
    assert card.component_scores == {"metadata": 100, "feeds": 80}
    assert card.weights == {"metadata": 1.0}
    assert card.overall_score == 100


def test_intelligence_category_uses_record_score():
    card = score_records({"intelligence": IntelligenceRecord(score=64)}, Settings())
    assert card.component_scores == {"intelligence": 64}
    assert card.overall_grade == "D"
    assert score_records({"intelligence": IntelligenceRecord()}, Settings()).component_scores == {}


def test_recommendations_are_ordered_by_priority():
    records = {
        "metadata": MetadataRecord(),
        "contact": ContactRecord(),
        "feeds": FeedRecord(),
        "intelligence": IntelligenceRecord(
            reputation=ReputationRecord(threat_score=60, risk_level="medium", security_score=40, reputation_score=40),
        ),
    }
    recs = build_recommendations(records, {}, Settings())
    ranks = [PRIORITY_ORDER[r.priority] for r in recs]
    assert ranks == sorted(ranks)
    assert recs[0].category == "intelligence"
    assert recs[0].priority == "critical"
    titles = {r.title for r in recs}
    assert "Add a page title" in titles
    assert "Publish a contact email address" in titles
    assert "Consider adding RSS/Atom feeds for content syndication" in titles

def test_security_header_recommendations():
    headers = grade_security_headers({
        "strict-transport-security": "max-age=60",
        "x-frame-options": "DENY",
        "referrer-policy": "no-referrer",
    })
    recs = build_recommendations({"intelligence": IntelligenceRecord(headers=headers)}, {"intelligence": 30}, Settings())
    by_title = {r.title: r for r in recs}
    missing = by_title["Add missing security headers"]
    assert missing.priority == "medium"
    assert missing.description == "Not sent: content-security-policy, x-content-type-options."
    assert by_title["Tighten security header values"].description == "Weak configuration: strict-transport-security."

    complete = grade_security_headers({
        "strict-transport-security": "max-age=31536000; includeSubDomains",
        "content-security-policy": "default-src 'self'",
        "x-frame-options": "SAMEORIGIN",
        "x-content-type-options": "nosniff",
    })
    recs = build_recommendations({"intelligence": IntelligenceRecord(headers=complete)}, {"intelligence": 30}, Settings())
    assert recs == []



def test_categories_above_threshold_get_no_recommendations():
    contact = ContactRecord(
        emails=["a@x.io", "b@x.io"],
        phones=[_phone("4155551234"), _phone("4155551235"), _phone("4155551236")],
        addresses=[PostalAddress(value="1 Main St", source="us_format"), PostalAddress(value="PO Box 9", source="po_box")],
        forms=[ContactForm(fields=["email"])],
        business_hours=[BusinessHours(day="Monday", closed=True)],
    )
    records = {"contact": contact, "metadata": _full_metadata(canonical="https://x.io/")}
    card = score_records(records, Settings())
    assert card.component_scores == {"contact": 100, "metadata": 100}
    assert build_recommendations(records, card.component_scores, Settings()) == []


def test_unanalyzed_categories_get_no_recommendations():
    assert build_recommendations({"social": None}, {}, Settings()) == []


def test_strengths_weaknesses_and_potential():
    scores = {"metadata": 90, "social": 30, "contact": 65, "feeds": 86}
    strengths, weaknesses = strengths_and_weaknesses(scores)
    assert [s["category"] for s in strengths] == ["metadata", "feeds"]
    assert weaknesses == [
        {"category": "social", "score": 30, "severity": "critical"},
        {"category": "contact", "score": 65, "severity": "medium"},
    ]
    assert improvement_potential(scores) == 32
    assert improvement_potential({}) == 0
