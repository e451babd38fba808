from __future__ import annotations

from dataclasses import dataclass, field
import re

from gradfunnel.core.urls import canonicalize_url, is_http_url

MANUAL_LOCATOR_TAG = "locator:manual"
HINT_WORDS = 3

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass(slots=True)
class ResolvedLocator:
    url: str
    tags: list[str] = field(default_factory=list)

    @property
    def is_manual(self) -> bool:
        return MANUAL_LOCATOR_TAG in self.tags


def resolve(job_url: str | None, company_url: str | None, title: str | None) -> ResolvedLocator:
    """Pick the URL a reader should open for this posting.

    When there is no direct job link (missing, not http(s), or just the
    company's careers page) the careers page is used instead and the posting
    is tagged for manual lookup with a short search hint from the title.
    """
    canonical_job = canonicalize_url(job_url)
    canonical_company = canonicalize_url(company_url)

    usable = bool(canonical_job) and is_http_url(canonical_job) and canonical_job != canonical_company
    if usable:
        return ResolvedLocator(url=canonical_job)

    tags = [MANUAL_LOCATOR_TAG]
    hint = search_hint(title)
    if hint:
        tags.append(f"hint:{hint}")
    return ResolvedLocator(url=canonical_company or canonical_job, tags=tags)


def search_hint(title: str | None, words: int = HINT_WORDS) -> str:
    return "-".join(_WORD_RE.findall((title or "").lower())[:words])
