from __future__ import annotations

from collections.abc import Iterable

from gradfunnel.ingest.career import UNKNOWN_CAREER_PATH
from gradfunnel.ingest.eligibility import EligibilityDecision
from gradfunnel.ingest.location import UNKNOWN_TAG, slugify
from gradfunnel.schemas.records import CATEGORY_SEPARATOR

EARLY_CAREER_TAG = "early-career"
UNCERTAIN_TAG = "eligibility:uncertain"
CAREER_PREFIX = "career:"
LOCATION_PREFIX = "loc:"


def compose(
    *,
    career_path: str,
    location_tags: list[str],
    eligibility: EligibilityDecision,
    locator_tags: Iterable[str] = (),
    posted_at_known: bool,
    department: str | None = None,
    is_remote: bool = False,
    source: str | None = None,
    platform_id: str | None = None,
) -> list[str]:
    """Assemble a posting's ordered tag set.

    Index 0 is always the ``career:`` tag and index 1 the ``loc:`` tag;
    downstream readers look them up by position and prefix.
    """
    location = next((item for item in location_tags if item.startswith(LOCATION_PREFIX)), UNKNOWN_TAG)
    department_slug = slugify(department or "")

    tags = [
        f"{CAREER_PREFIX}{slugify(career_path) or UNKNOWN_CAREER_PATH}",
        location,
        UNCERTAIN_TAG if eligibility.uncertain else EARLY_CAREER_TAG,
        *locator_tags,
        "freshness:known" if posted_at_known else "freshness:unknown",
        f"dept:{department_slug}" if department_slug else "dept:general",
        "mode:remote" if is_remote else "mode:hybrid",
    ]
    if source and platform_id:
        tags.append(f"{slugify(source)}:id:{_clean_token(platform_id)}")
    return dedupe_tags(tags)


def dedupe_tags(tags: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []
    for raw in tags:
        token = _clean_token(raw)
        if not token or token in seen:
            continue
        seen.add(token)
        deduped.append(token)
    return deduped


def serialize(tags: Iterable[str]) -> str:
    return CATEGORY_SEPARATOR.join(dedupe_tags(tags))


def career_path_from_categories(categories: str | Iterable[str] | None) -> str:
    if not categories:
        return UNKNOWN_CAREER_PATH
    tokens = categories.split(CATEGORY_SEPARATOR) if isinstance(categories, str) else categories
    for token in tokens:
        if token.startswith(CAREER_PREFIX):
            return token[len(CAREER_PREFIX):] or UNKNOWN_CAREER_PATH
    return UNKNOWN_CAREER_PATH


def _clean_token(value: str) -> str:
    return value.replace(CATEGORY_SEPARATOR, "-").strip()
