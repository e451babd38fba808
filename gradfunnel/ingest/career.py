from __future__ import annotations

import re

UNKNOWN_CAREER_PATH = "unknown"
MIN_SCORE = 2
TITLE_WEIGHT = 2
DESCRIPTION_WEIGHT = 1

# Slugs match the category values the matching service filters on.
CAREER_PATH_KEYWORDS: dict[str, tuple[str, ...]] = {
    "strategy-business-design": (
        "consulting", "strategy", "business design", "transformation", "corporate development",
        "business analyst", "strategy analyst", "transformation analyst",
    ),
    "data-analytics": (
        "data analyst", "business intelligence", "data scientist", "research analyst",
        "analytics", "insights", "reporting", "data",
    ),
    "retail-luxury": (
        "retail", "merchandising", "luxury", "brand", "fashion", "consumer goods",
        "retail management", "merchandising analyst",
    ),
    "sales-client-success": (
        "sales", "client success", "account manager", "business development",
        "customer success", "sales development", "account executive",
    ),
    "marketing-growth": (
        "marketing", "digital marketing", "brand marketing", "content", "growth",
        "social media", "seo", "ppc", "growth marketing",
    ),
    "finance-investment": (
        "finance", "investment", "banking", "venture capital", "private equity",
        "investment analyst", "financial analyst", "corporate finance", "accounting", "audit",
    ),
    "operations-supply-chain": (
        "operations", "supply chain", "logistics", "procurement",
        "operations analyst", "supply chain analyst", "logistics coordinator",
    ),
    "product-innovation": (
        "product", "innovation", "product management", "innovation analyst",
        "product operations", "product analyst",
    ),
    "tech-transformation": (
        "software", "engineer", "developer", "it analyst", "it support", "digital transformation",
        "product owner", "devops", "cloud", "cybersecurity",
    ),
    "sustainability-esg": (
        "sustainability", "esg", "environmental", "governance",
        "sustainability analyst", "esg consultant", "impact investing",
    ),
}


def _keyword_patterns() -> dict[str, list[re.Pattern[str]]]:
    return {
        path: [re.compile(rf"\b{re.escape(keyword)}\b") for keyword in keywords]
        for path, keywords in CAREER_PATH_KEYWORDS.items()
    }


_PATTERNS = _keyword_patterns()


def classify(title: str | None, description: str | None) -> str:
    """Best-scoring career path slug, or ``unknown`` below the minimum score.

    A keyword hit in the title counts double; ties keep the path listed first.
    """
    lowered_title = (title or "").lower()
    lowered_description = (description or "").lower()

    best_path = UNKNOWN_CAREER_PATH
    best_score = 0
    for path, patterns in _PATTERNS.items():
        score = 0
        for pattern in patterns:
            if pattern.search(lowered_title):
                score += TITLE_WEIGHT
            elif pattern.search(lowered_description):
                score += DESCRIPTION_WEIGHT
        if score > best_score:
            best_path, best_score = path, score

    return best_path if best_score >= MIN_SCORE else UNKNOWN_CAREER_PATH
