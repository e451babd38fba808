from __future__ import annotations

from datetime import datetime, timedelta, timezone

from gradfunnel.schemas.records import FreshnessTier

# Upper bounds (exclusive) of each tier, checked in order; older is "old".
TIER_BOUNDS: tuple[tuple[FreshnessTier, timedelta], ...] = (
    ("ultra_fresh", timedelta(hours=48)),
    ("fresh", timedelta(days=7)),
    ("recent", timedelta(days=30)),
    ("stale", timedelta(days=90)),
)


def classify(posted_at: datetime, *, now: datetime | None = None) -> FreshnessTier:
    current = now or datetime.now(timezone.utc)
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=timezone.utc)
    age = max(timedelta(0), current - posted_at)
    for tier, bound in TIER_BOUNDS:
        if age < bound:
            return tier
    return "old"
