from __future__ import annotations

import httpx

BLOCK_STATUS_CODES = frozenset({403, 429, 503})

# Matched case-insensitively anywhere in the body.
BLOCK_PHRASES = (
    "just a moment",
    "cloudflare",
    "access denied",
    "blocked",
    "rate limited",
    "too many requests",
    "security check",
    "captcha",
    "maintenance",
    "service unavailable",
    "temporarily unavailable",
)


def looks_blocked(status_code: int | None, body_text: str | None) -> bool:
    if status_code in BLOCK_STATUS_CODES:
        return True
    if not body_text:
        return False
    lowered = body_text.lower()
    return any(phrase in lowered for phrase in BLOCK_PHRASES)


def response_looks_blocked(response: httpx.Response) -> bool:
    try:
        body = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        body = ""
    return looks_blocked(response.status_code, body)
