from __future__ import annotations

import hashlib
from urllib.parse import urlparse, urlunparse

DEFAULT_PORTS = {"http": "80", "https": "443"}


def canonicalize_url(raw_url: str | None) -> str:
    """Lower-case, drop query, fragment, default port and trailing slash.

    Returns an empty string for missing or blank input. Strings without a
    scheme are still lower-cased and trimmed so that relative locators from
    sloppy sources collapse the same way on every run.
    """
    if not raw_url:
        return ""
    stripped = raw_url.strip().lower()
    if not stripped:
        return ""

    parsed = urlparse(stripped)
    if not parsed.scheme or not parsed.netloc:
        bare = stripped.split("?", 1)[0].split("#", 1)[0]
        return bare.rstrip("/")

    netloc = parsed.netloc
    if ":" in netloc:
        host, port = netloc.rsplit(":", maxsplit=1)
        if DEFAULT_PORTS.get(parsed.scheme) == port:
            netloc = host

    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme, netloc, path, "", "", ""))


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def canonical_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
