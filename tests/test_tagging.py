from __future__ import annotations

from datetime import datetime, timedelta, timezone

from gradfunnel.ingest import career, categories, freshness
from gradfunnel.ingest.eligibility import EligibilityDecision

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
CLEAR = EligibilityDecision(eligible=True, uncertain=False, reason="positive_signal")
UNCERTAIN = EligibilityDecision(eligible=True, uncertain=True, reason="no_clear_signals")


def test_freshness_tiers_by_age() -> None:
    assert freshness.classify(NOW - timedelta(hours=1), now=NOW) == "ultra_fresh"
    assert freshness.classify(NOW - timedelta(hours=47), now=NOW) == "ultra_fresh"
    assert freshness.classify(NOW - timedelta(hours=48), now=NOW) == "fresh"
    assert freshness.classify(NOW - timedelta(days=10), now=NOW) == "recent"
    assert freshness.classify(NOW - timedelta(days=45), now=NOW) == "stale"
    assert freshness.classify(NOW - timedelta(days=120), now=NOW) == "old"


def test_freshness_future_and_naive_dates() -> None:
    assert freshness.classify(NOW + timedelta(days=3), now=NOW) == "ultra_fresh"
    naive = (NOW - timedelta(days=2, hours=1)).replace(tzinfo=None)
    assert freshness.classify(naive, now=NOW) == "fresh"


def test_career_path_prefers_title_hits() -> None:
    assert career.classify("Marketing Intern", "6-month internship for students") == "marketing-growth"
    assert career.classify("Graduate Financial Analyst", "") == "finance-investment"


def test_career_path_needs_a_minimum_score() -> None:
    # One description hit scores 1, below the threshold.
    assert career.classify("Graduate Programme", "Some exposure to logistics") == career.UNKNOWN_CAREER_PATH
    assert career.classify("", "") == career.UNKNOWN_CAREER_PATH


def test_compose_puts_career_then_location_first() -> None:
    tags = categories.compose(
        career_path="data-analytics",
        location_tags=["loc:madrid-spain"],
        eligibility=CLEAR,
        posted_at_known=True,
        department="Business Intelligence",
        source="greenhouse",
        platform_id="4012",
    )
    assert tags == [
        "career:data-analytics",
        "loc:madrid-spain",
        "early-career",
        "freshness:known",
        "dept:business-intelligence",
        "mode:hybrid",
        "greenhouse:id:4012",
    ]


def test_compose_marks_uncertain_and_manual_locator() -> None:
    tags = categories.compose(
        career_path=career.UNKNOWN_CAREER_PATH,
        location_tags=[],
        eligibility=UNCERTAIN,
        locator_tags=["locator:manual", "hint:business-analyst"],
        posted_at_known=False,
        is_remote=True,
    )
    assert tags[0] == "career:unknown"
    assert tags[1] == "loc:unknown"
    assert "eligibility:uncertain" in tags
    assert "early-career" not in tags
    assert tags.index("locator:manual") < tags.index("freshness:unknown")
    assert "hint:business-analyst" in tags
    assert "dept:general" in tags
    assert "mode:remote" in tags


def test_dedupe_and_serialize_strip_separator_characters() -> None:
    assert categories.dedupe_tags(["a", "b", "a", " ", "c|d"]) == ["a", "b", "c-d"]
    assert categories.serialize(["career:sales-client-success", "loc:unknown", "loc:unknown"]) == (
        "career:sales-client-success|loc:unknown"
    )


def test_career_path_from_categories() -> None:
    assert categories.career_path_from_categories("career:retail-luxury|loc:paris-france") == "retail-luxury"
    assert categories.career_path_from_categories(["loc:paris-france", "career:data-analytics"]) == "data-analytics"
    assert categories.career_path_from_categories("loc:paris-france") == "unknown"
    assert categories.career_path_from_categories(None) == "unknown"
