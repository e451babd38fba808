from __future__ import annotations

import re

from gradfunnel.core.urls import canonical_hash, canonicalize_url

_WHITESPACE_RE = re.compile(r"\s+")
_FIELD_SEPARATOR = "\x1f"


def normalize_field(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (value or "").strip().lower())


def identity_hash(title: str | None, company: str | None, canonical_url: str | None) -> str:
    """Dedup key for a posting.

    Every caller goes through here so that re-scrapes differing only in case,
    whitespace or URL trailing slash/query collide on the same key.
    """
    parts = (
        normalize_field(title),
        normalize_field(company),
        canonicalize_url(normalize_field(canonical_url)),
    )
    return canonical_hash(_FIELD_SEPARATOR.join(parts))
